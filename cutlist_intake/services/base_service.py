import time
from abc import ABC, abstractmethod
from typing import Any

from cutlist_intake.core.exceptions import AppError
from cutlist_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)


class BaseService(ABC):
    """Base class for pipeline services.

    ``execute`` validates input, runs the service and converts unexpected
    exceptions into ``AppError`` so callers only ever see the application
    taxonomy.
    """

    def __init__(self):
        self.logger = LOGGER

    async def execute(self, *args, **kwargs) -> Any:
        """Validate, run and time the service.

        Raises:
            AppError: If validation or execution fails
        """
        service_name = self.__class__.__name__
        started = time.perf_counter()
        try:
            self.validate(*args, **kwargs)
            result = await self.run(*args, **kwargs)

        except AppError as e:
            self.logger.warning(
                f"{service_name} rejected request: {e}",
                extra={"service": service_name, "code": e.code},
            )
            raise

        except Exception as e:
            self.logger.error(
                f"Service execution failed: {str(e)}",
                exc_info=True,
                extra={"service": service_name},
            )
            raise AppError(f"Service execution failed: {str(e)}", original_error=e)

        self.logger.debug(
            f"{service_name} finished",
            extra={"duration_ms": round((time.perf_counter() - started) * 1000, 1)},
        )
        return result

    def validate(self, *args, **kwargs):
        """Validate service input.

        Raises:
            ValidationError: If input is invalid
        """
        pass

    @abstractmethod
    async def run(self, *args, **kwargs) -> Any:
        """Run the core service logic."""
        pass
