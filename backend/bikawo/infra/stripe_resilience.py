from bikawo.settings import settings
from bikawo.shared.circuit_breaker import CircuitBreaker


def build_stripe_circuit(app_settings) -> CircuitBreaker:
    """Breaker shared by every refund call; its timeout is the default refund timeout."""
    return CircuitBreaker(
        name="stripe",
        failure_threshold=app_settings.stripe_circuit_failure_threshold,
        recovery_time=app_settings.stripe_circuit_recovery_seconds,
        window_seconds=app_settings.stripe_circuit_window_seconds,
        half_open_max_calls=app_settings.stripe_circuit_half_open_max_calls,
        timeout_seconds=app_settings.stripe_refund_timeout_seconds,
    )


stripe_circuit = build_stripe_circuit(settings)
