"""
Error taxonomy for the city-onboarding pipeline.

Scope of each error decides where it is caught:
  - ConfigurationError       run-level, raised before any module is attempted
  - ModuleNotRegisteredError module-level, sibling modules continue
  - GenerationError          module-level, caught at the module boundary
  - MalformedResponseError   content-level, absorbed by the sanitizer
  - PersistenceError         module-level inside a module, run-level in finalization
"""


class OnboardingError(Exception):
    """Base class for onboarding pipeline errors."""
    pass


class ConfigurationError(OnboardingError):
    """A required setting (the completion-service credential) is missing."""
    pass


class ModuleNotRegisteredError(OnboardingError):
    """Catalog module has no matching row in the modules table."""

    def __init__(self, slug: str):
        super().__init__("module not registered")
        self.slug = slug


class GenerationError(OnboardingError):
    """Completion service returned a non-2xx status, failed in transport, or sent an empty body."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class MalformedResponseError(OnboardingError):
    """Completion text could not be decoded into the expected JSON shape."""
    pass


class PersistenceError(OnboardingError):
    """A database read or write failed."""
    pass


class IllegalTransitionError(OnboardingError):
    """A run or module status change not allowed by the transition table."""
    pass


class CityExistsError(OnboardingError):
    """A city with the requested slug already exists."""

    def __init__(self, slug: str):
        super().__init__(f'City with slug "{slug}" already exists')
        self.slug = slug
