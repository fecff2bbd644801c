from functools import lru_cache

from onboarding.core.orchestrator import OnboardingOrchestrator, build_default_orchestrator


@lru_cache(maxsize=1)
def get_orchestrator() -> OnboardingOrchestrator:
    return build_default_orchestrator()
