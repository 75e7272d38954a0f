"""Acceptance checks on the results a node agent returns."""

from abc import ABC, abstractmethod

import pydantic

from ..core.exceptions import UnknownWorkloadTypeError, ValidationError
from ..grid.models import Deployment, ResultState
from ..grid.workloads import decode_result


class Validator(ABC):
    """Decides whether a node's returned results are acceptable."""

    @abstractmethod
    def validate(self, sent: Deployment, returned: Deployment) -> None:
        """Check returned results against the sent deployment.

        Raises:
            ValidationError: On the first offending workload
        """


class DefaultValidator(Validator):
    """Every sent workload has an ok result whose payload decodes for its type."""

    def validate(self, sent: Deployment, returned: Deployment) -> None:
        for workload in sent.workloads:
            result_workload = returned.get_workload(workload.name)
            if result_workload is None:
                raise ValidationError(sent.node_id, workload.name, "no result returned")

            result = result_workload.result
            if result.state == ResultState.ERROR:
                raise ValidationError(
                    sent.node_id,
                    workload.name,
                    f"agent reported error: {result.message or 'no message'}",
                )
            if result.state != ResultState.OK:
                raise ValidationError(sent.node_id, workload.name, "result still pending")

            try:
                decode_result(workload.type, result.data)
            except UnknownWorkloadTypeError as e:
                raise ValidationError(sent.node_id, workload.name, e.message) from e
            except pydantic.ValidationError as e:
                raise ValidationError(
                    sent.node_id,
                    workload.name,
                    f"result payload does not decode as {workload.type}: "
                    f"{e.error_count()} error(s)",
                ) from e


class PermissiveValidator(Validator):
    """Accepts any result. For tests and dry runs."""

    def validate(self, sent: Deployment, returned: Deployment) -> None:
        return None
