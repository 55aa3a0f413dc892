from pybreaker import CircuitBreaker
from sqlalchemy.exc import IntegrityError

# Shared by every store write; opens after repeated commit failures.
# Integrity errors are slot conflicts, not outages.
store_circuit_breaker = CircuitBreaker(
    fail_max=3,
    reset_timeout=60,
    name="store_breaker",
    exclude=[IntegrityError],
)
