"""
Configuration Loader for the Deadlock Handling Simulator.

Holds the simulation defaults, loads and validates JSON overrides and
builds the initial customers and resources from them.
"""

import json
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional

from algorithms.avoidance import SAFETY_CHECKS
from models.customer import Customer, CustomerState
from models.resource import Resource
from models.system_state import SystemState

CUSTOMER_NAMES = [
    'Customer_A', 'Customer_B', 'Customer_C', 'Customer_D', 'Customer_E',
    'Customer_F', 'Customer_G', 'Customer_H', 'Customer_I', 'Customer_J',
    'Customer_K', 'Customer_L', 'Customer_M', 'Customer_N', 'Customer_O',
]

RESOURCE_NAMES = [
    'Cart_Lock', 'Payment_Gateway', 'Inventory_DB', 'Order_Processor',
    'Shipping_Service', 'Coupon_Engine', 'Wallet_Service', 'Auth_Token',
    'Session_Manager', 'Cache_Store', 'Search_Index', 'Notification_Queue',
]

PROBABILITY_FIELDS = (
    'arrival_probability', 'request_probability', 'wait_probability',
    'release_probability', 'idle_probability',
)


class ConfigLoadError(Exception):
    """Exception raised when a configuration file cannot be loaded or is invalid."""
    pass


@dataclass
class SimulationConfig:
    """
    Simulation parameters.

    Attributes:
        num_customers: Customers created at reset
        num_resources: Resources created at reset
        resource_capacity: max_instances of every resource (1 = mutex)
        arrival_probability: Chance an idle customer starts running each tick
        request_probability: Chance an active customer asks for a free resource
        wait_probability: Chance a customer that got nothing blocks on a held resource
        release_probability: Chance a holder releases one resource each tick
        idle_probability: Chance a customer that released everything goes idle
        max_log_entries: Event log retention window
        max_perf_samples: Performance samples kept
        max_stress_samples: Stress samples kept
        recovery_settle_ticks: Ticks between a recovery and the return to running
        detect_interval: Ticks between detection scans
        claim_size: Resources in each customer's Banker's claim
        safety_check: "bankers" or "capacity"
        stress_customer_cap: Roster size limit in stress mode
        tick_interval: Seconds between ticks in realtime mode
        seed: Random seed (None = fresh entropy)
        check_invariants: Assert entity invariants after every tick
        prevention / avoidance / detection: Initial strategy toggles
        log_file: Optional log file path
    """
    num_customers: int = 6
    num_resources: int = 8
    resource_capacity: int = 1
    arrival_probability: float = 0.6
    request_probability: float = 0.7
    wait_probability: float = 0.5
    release_probability: float = 0.35
    idle_probability: float = 0.3
    max_log_entries: int = 200
    max_perf_samples: int = 60
    max_stress_samples: int = 40
    recovery_settle_ticks: int = 2
    detect_interval: int = 1
    claim_size: int = 3
    safety_check: str = "bankers"
    stress_customer_cap: int = 12
    tick_interval: float = 1.2
    seed: Optional[int] = None
    check_invariants: bool = True
    prevention: bool = False
    avoidance: bool = False
    detection: bool = True
    customer_names: List[str] = field(default_factory=lambda: list(CUSTOMER_NAMES))
    resource_names: List[str] = field(default_factory=lambda: list(RESOURCE_NAMES))
    log_file: Optional[str] = None

    def __post_init__(self):
        validate_config(self)


def validate_config(config: SimulationConfig) -> None:
    """
    Validate configuration values.

    Raises:
        ConfigLoadError: If any value is out of range
    """
    for name in PROBABILITY_FIELDS:
        value = getattr(config, name)
        if not 0.0 <= value <= 1.0:
            raise ConfigLoadError(f"{name} must be between 0 and 1 (got {value})")

    if config.num_resources < 1:
        raise ConfigLoadError("num_resources must be at least 1")
    if config.num_customers < 1:
        raise ConfigLoadError("num_customers must be at least 1")
    if config.resource_capacity < 1:
        raise ConfigLoadError("resource_capacity must be at least 1")
    if config.stress_customer_cap < config.num_customers:
        raise ConfigLoadError(
            f"stress_customer_cap ({config.stress_customer_cap}) is below "
            f"num_customers ({config.num_customers})"
        )
    if config.stress_customer_cap > len(config.customer_names):
        raise ConfigLoadError(
            f"Only {len(config.customer_names)} customer names for a roster "
            f"of up to {config.stress_customer_cap}"
        )
    if config.num_resources > len(config.resource_names):
        raise ConfigLoadError(
            f"Only {len(config.resource_names)} resource names for "
            f"{config.num_resources} resources"
        )
    for name in ('max_log_entries', 'max_perf_samples', 'max_stress_samples',
                 'detect_interval', 'claim_size'):
        if getattr(config, name) < 1:
            raise ConfigLoadError(f"{name} must be at least 1")
    if config.recovery_settle_ticks < 0:
        raise ConfigLoadError("recovery_settle_ticks cannot be negative")
    if config.tick_interval <= 0:
        raise ConfigLoadError("tick_interval must be positive")
    if config.safety_check not in SAFETY_CHECKS:
        raise ConfigLoadError(
            f"Unknown safety_check '{config.safety_check}' "
            f"(expected one of: {', '.join(SAFETY_CHECKS)})"
        )


def load_config(file_path: str, **overrides) -> SimulationConfig:
    """
    Load configuration from a JSON file.

    Unknown keys are rejected; missing keys keep their defaults.

    Args:
        file_path: Path to configuration JSON file
        overrides: Values taking precedence over the file (None values ignored)

    Returns:
        Validated SimulationConfig

    Raises:
        ConfigLoadError: If file cannot be loaded or is invalid
    """
    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ConfigLoadError(f"Configuration file not found: {file_path}")
    except json.JSONDecodeError as e:
        raise ConfigLoadError(f"Invalid JSON in configuration file: {e}")

    if not isinstance(data, dict):
        raise ConfigLoadError("Configuration must be a JSON object")

    return config_from_dict(data, **overrides)


def config_from_dict(data: Dict[str, Any], **overrides) -> SimulationConfig:
    """
    Build a SimulationConfig from a plain dictionary.

    Raises:
        ConfigLoadError: On unknown keys or invalid values
    """
    known = {f.name for f in fields(SimulationConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigLoadError(f"Unknown configuration keys: {', '.join(unknown)}")

    values = dict(data)
    values.update({k: v for k, v in overrides.items() if v is not None})
    try:
        return SimulationConfig(**values)
    except TypeError as e:
        raise ConfigLoadError(f"Invalid configuration: {e}")


def default_claim(index: int, config: SimulationConfig) -> List[str]:
    """
    Banker's claim for a customer: claim_size consecutive resources from its index.

    Deterministic so every reset rebuilds the same claims.
    """
    size = min(config.claim_size, config.num_resources)
    return [f"R{(index + offset) % config.num_resources}" for offset in range(size)]


def build_customer(index: int, config: SimulationConfig,
                   state: CustomerState = CustomerState.IDLE) -> Customer:
    return Customer(
        index=index,
        name=config.customer_names[index],
        state=state,
        claim=default_claim(index, config),
    )


def build_system_state(config: SimulationConfig) -> SystemState:
    """
    Create the reset-time state: idle customers, free resources.

    Args:
        config: Simulation configuration

    Returns:
        Fresh SystemState
    """
    resources = [
        Resource(index=i, name=config.resource_names[i], max_instances=config.resource_capacity)
        for i in range(config.num_resources)
    ]
    customers = [build_customer(i, config) for i in range(config.num_customers)]
    return SystemState(customers=customers, resources=resources)

