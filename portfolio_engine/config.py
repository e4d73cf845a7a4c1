"""
Configuration Management for the Portfolio Optimization Engine.

This module provides a type-safe, validated configuration system using Pydantic.
Configuration values are loaded from environment variables or .env file with
defaults matching the engine's reference tuning.

Algorithm configurations are immutable value objects (``frozen=True``). They
are passed explicitly into each solver constructor and are never mutated at
runtime; derive a variant with ``config.model_copy(update={...})``.

Usage:
    >>> from portfolio_engine.config import settings
    >>> print(settings.genetic.population_size)
    >>> print(settings.cache.ttl_seconds)
    >>> print(settings.decomposition.large_scale_threshold)
"""

from typing import Literal, Optional
from pydantic import Field, computed_field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _algorithm_config(env_prefix: str) -> SettingsConfigDict:
    return SettingsConfigDict(
        env_prefix=env_prefix,
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )


# =============================================================================
# Genetic Algorithm Configuration
# =============================================================================

class GeneticConfig(BaseSettings):
    """
    Genetic algorithm tuning.

    Environment Variables:
        GENETIC_POPULATION_SIZE: Individuals per generation (default: 100)
        GENETIC_GENERATIONS: Generation cap (default: 500)
        GENETIC_MUTATION_RATE: Per-gene mutation probability (default: 0.1)
        GENETIC_CROSSOVER_RATE: Probability an offspring is a crossover (default: 0.8)
        GENETIC_ELITE_SIZE: Individuals carried over unchanged (default: 10)
    """

    population_size: int = Field(default=100, ge=2, description="Individuals per generation")
    generations: int = Field(default=500, ge=1, description="Maximum number of generations")
    mutation_rate: float = Field(default=0.1, ge=0.0, le=1.0, description="Per-gene mutation probability")
    crossover_rate: float = Field(default=0.8, ge=0.0, le=1.0, description="Crossover probability")
    elite_size: int = Field(default=10, ge=1, description="Elites kept each generation")

    # Early stopping: variance of the last `convergence_window` best fitness
    # values below `convergence_epsilon`, checked after `min_generations`.
    convergence_window: int = Field(default=20, ge=2)
    convergence_epsilon: float = Field(default=1e-3, gt=0.0)
    min_generations: int = Field(default=50, ge=0)

    @model_validator(mode="after")
    def validate_elite_size(self) -> "GeneticConfig":
        """Ensure elites fit inside the population."""
        if self.elite_size >= self.population_size:
            raise ValueError(
                f"elite_size ({self.elite_size}) must be < population_size ({self.population_size})"
            )
        return self

    model_config = _algorithm_config("GENETIC_")


# =============================================================================
# Simulated Annealing Configuration
# =============================================================================

class AnnealingConfig(BaseSettings):
    """
    Simulated annealing tuning.

    Environment Variables:
        ANNEALING_INITIAL_TEMPERATURE (default: 1000)
        ANNEALING_COOLING_RATE (default: 0.95)
        ANNEALING_MIN_TEMPERATURE (default: 0.01)
        ANNEALING_MAX_ITERATIONS (default: 10000)
    """

    initial_temperature: float = Field(default=1000.0, gt=0.0)
    cooling_rate: float = Field(default=0.95, gt=0.0, lt=1.0)
    min_temperature: float = Field(default=0.01, gt=0.0)
    max_iterations: int = Field(default=10000, ge=1)

    # Width of the neighbour move window as a fraction of the domain range
    neighbor_fraction: float = Field(default=0.1, gt=0.0, le=1.0)

    @field_validator("min_temperature")
    @classmethod
    def validate_min_lt_initial(cls, v: float, info) -> float:
        """Ensure the floor sits below the starting temperature."""
        if "initial_temperature" in info.data and v >= info.data["initial_temperature"]:
            raise ValueError(
                f"min_temperature ({v}) must be < initial_temperature ({info.data['initial_temperature']})"
            )
        return v

    model_config = _algorithm_config("ANNEALING_")


# =============================================================================
# Particle Swarm Configuration
# =============================================================================

class ParticleSwarmConfig(BaseSettings):
    """
    Particle swarm tuning.

    Positions are left unclamped during the search unless ``clamp_positions``
    is set; candidates are always repaired before they are evaluated.
    """

    swarm_size: int = Field(default=50, ge=1)
    iterations: int = Field(default=1000, ge=1)
    inertia: float = Field(default=0.9, ge=0.0)
    cognitive: float = Field(default=2.0, ge=0.0)
    social: float = Field(default=2.0, ge=0.0)
    clamp_positions: bool = Field(default=False, description="Clamp positions to the domain each step")

    model_config = _algorithm_config("PSO_")


# =============================================================================
# Quantum-Inspired Configuration
# =============================================================================

class QuantumInspiredConfig(BaseSettings):
    """
    Quantum-inspired evolutionary search tuning.

    Environment Variables:
        QUANTUM_INSPIRED_POPULATION_SIZE (default: 50)
        QUANTUM_INSPIRED_GENERATIONS (default: 300)
        QUANTUM_INSPIRED_OBSERVATION_COUNT (default: 10)
        QUANTUM_INSPIRED_NORMALIZE_AMPLITUDES (default: true)
    """

    population_size: int = Field(default=50, ge=1)
    generations: int = Field(default=300, ge=1)
    observation_count: int = Field(default=10, ge=1, description="Individuals observed per generation")

    # Rotation angle is pi * clip(angle_scale * |best| / scale, min, max). The
    # magnitude |best| is used so negative objectives (minimize_risk) still rotate.
    # scale is fitness_scale when set, else the first non-zero best of the run.
    angle_scale: float = Field(default=0.01, gt=0.0)
    fitness_scale: Optional[float] = Field(default=None, gt=0.0, description="Fixed fitness scale (None = relative)")
    min_rotation: float = Field(default=0.01, ge=0.0)
    max_rotation: float = Field(default=0.05, gt=0.0)

    normalize_amplitudes: bool = Field(
        default=True,
        description="Renormalize each amplitude pair after rotation and entanglement",
    )

    model_config = _algorithm_config("QUANTUM_INSPIRED_")


# =============================================================================
# Hybrid Configuration
# =============================================================================

class HybridConfig(BaseSettings):
    """Hybrid (quantum-inspired then annealing) composition settings."""

    quality_boost: float = Field(default=1.1, ge=1.0, description="Multiplier on reported solution quality")
    warm_start: bool = Field(
        default=False,
        description="Seed the annealing stage with the quantum-inspired assignment",
    )

    model_config = _algorithm_config("HYBRID_")


# =============================================================================
# Problem Formulation Configuration
# =============================================================================

class FormulationConfig(BaseSettings):
    """
    Defaults applied when a request is converted into a Problem.

    Environment Variables:
        FORMULATION_TIME_LIMIT_SECONDS: Solver deadline (default: 300)
        FORMULATION_QUALITY_TARGET: Target solution quality (default: 0.95)
        FORMULATION_BUDGET_PENALTY: Budget penalty weight (default: 1000)
        FORMULATION_RISK_PENALTY: Risk penalty weight (default: 500)
        FORMULATION_CATEGORY_PENALTY: Category-limit penalty weight (default: 200)
        FORMULATION_EVALUATE_CATEGORY_LIMITS: Score category limits (default: false)
    """

    time_limit_seconds: float = Field(default=300.0, gt=0.0)
    quality_target: float = Field(default=0.95, ge=0.0, le=1.0)
    budget_penalty: float = Field(default=1000.0, ge=0.0)
    risk_penalty: float = Field(default=500.0, ge=0.0)
    category_penalty: float = Field(default=200.0, ge=0.0)
    default_external_score: float = Field(default=50.0)
    evaluate_category_limits: bool = Field(
        default=False,
        description="Include category-limit constraints in the violation sum",
    )

    model_config = _algorithm_config("FORMULATION_")


# =============================================================================
# Decomposition Configuration
# =============================================================================

class DecompositionConfig(BaseSettings):
    """Large-scale (hierarchical) solve settings."""

    large_scale_threshold: int = Field(
        default=10000,
        ge=1,
        description="Item count above which the hierarchical decomposer is used",
    )
    max_items: int = Field(default=100000, ge=1, description="Hard cap on items per request")
    cluster_count: int = Field(default=10, ge=1, description="Target number of clusters")
    max_workers: Optional[int] = Field(default=None, ge=1, description="Thread pool size (None = executor default)")

    @field_validator("max_items")
    @classmethod
    def validate_max_ge_threshold(cls, v: int, info) -> int:
        """Ensure max_items >= large_scale_threshold."""
        if "large_scale_threshold" in info.data and v < info.data["large_scale_threshold"]:
            raise ValueError(
                f"max_items ({v}) must be >= large_scale_threshold ({info.data['large_scale_threshold']})"
            )
        return v

    model_config = _algorithm_config("DECOMPOSITION_")


# =============================================================================
# Cache Configuration
# =============================================================================

class CacheConfig(BaseSettings):
    """
    Result cache configuration.

    Environment Variables:
        CACHE_ENABLED: Enable result caching (default: true)
        CACHE_TTL_SECONDS: Entry lifetime (default: 7200)
        CACHE_REDIS_URL: Redis connection URL; unset means in-memory store
        CACHE_KEY_PREFIX: Key namespace (default: portfolio_opt)
    """

    enabled: bool = Field(default=True)
    ttl_seconds: int = Field(default=7200, ge=1)
    redis_url: Optional[str] = Field(default=None, description="redis://host:port/db")
    key_prefix: str = Field(default="portfolio_opt", min_length=1)

    @computed_field
    @property
    def uses_redis(self) -> bool:
        """Check if a Redis backend is configured."""
        return bool(self.redis_url)

    model_config = _algorithm_config("CACHE_")


# =============================================================================
# Global Settings Container
# =============================================================================

class Settings(BaseSettings):
    """
    Global engine settings container.

    Aggregates all configuration sections into a single settings object.

    Usage:
        >>> from portfolio_engine.config import Settings
        >>> custom = Settings(genetic=GeneticConfig(population_size=20, elite_size=2))
        >>> custom.genetic.population_size
        20
    """

    genetic: GeneticConfig = Field(default_factory=GeneticConfig)
    annealing: AnnealingConfig = Field(default_factory=AnnealingConfig)
    particle_swarm: ParticleSwarmConfig = Field(default_factory=ParticleSwarmConfig)
    quantum_inspired: QuantumInspiredConfig = Field(default_factory=QuantumInspiredConfig)
    hybrid: HybridConfig = Field(default_factory=HybridConfig)
    formulation: FormulationConfig = Field(default_factory=FormulationConfig)
    decomposition: DecompositionConfig = Field(default_factory=DecompositionConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    max_tracked_runs: int = Field(default=1000, ge=1, description="Status registry size; oldest runs are evicted first")

    model_config = SettingsConfigDict(
        env_prefix="PORTFOLIO_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


# =============================================================================
# Global Configuration Instance
# =============================================================================

# Singleton settings instance - import this throughout the application
settings = Settings()
