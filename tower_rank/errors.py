"""Error taxonomy shared by the training, scoring and graph code."""


class TowerRankError(Exception):
    pass


class ConfigurationError(TowerRankError, ValueError):
    """Invalid sizes or option names, raised before any state is allocated."""


class DimensionMismatch(TowerRankError, ValueError):
    """A feature row or batch whose shape disagrees with the configured one."""


class NumericalInstability(TowerRankError, FloatingPointError):
    """Loss or score evaluated to a non-finite value."""
