"""
End-to-end tests for spec changes applied while the operator runs or is stopped
"""
import pytest

from pmem_operator_e2e.models import Phase
from pmem_operator_e2e.testcases import update_cases

CASES = update_cases()


@pytest.mark.e2e
class TestUpdating:
    """Every field of a running Deployment can be changed"""

    @pytest.mark.parametrize('operator_stopped', [False, True], ids=['while-running', 'while-stopped'])
    @pytest.mark.parametrize('case', CASES, ids=[c.name for c in CASES])
    def test_update(self, orchestrator, case, operator_stopped):
        """Test that an updated field is rendered, also when the operator missed the update"""
        name = case.deployment_name
        spec = case.base_spec()
        orchestrator.create(name, spec)
        orchestrator.validate_driver(name, what="validate driver before update")

        # The operator may only have touched the status
        snapshot = orchestrator.snapshot(name)
        assert snapshot.spec == spec, f"spec of {name} was modified: {snapshot.spec}"
        assert snapshot.phase == Phase.RUNNING.value, f"{name} is in phase {snapshot.phase}"

        if operator_stopped:
            orchestrator.stop_operator()
        orchestrator.edit(name, case.mutate)
        if operator_stopped:
            orchestrator.start_operator()

        orchestrator.validate_driver(name, what="validate driver after update and restart")
