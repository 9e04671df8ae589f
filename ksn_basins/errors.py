class KsnBasinsError(Exception):
    """Base class for all errors raised by ksn_basins."""


class ConfigurationError(KsnBasinsError, ValueError):
    """Invalid configuration or structurally malformed input; aborts the run."""


class GridAlignmentError(ConfigurationError):
    """An auxiliary grid could not be resampled onto the DEM."""


class PourPointError(KsnBasinsError):
    """A pour point cannot be located on the DEM."""


class EmptyNetworkError(KsnBasinsError):
    """No stream network could be derived, even at a negligible threshold."""


class BasinProcessingError(KsnBasinsError):
    """A failure while processing one basin, tagged with its pour point id."""

    def __init__(self, pour_point_id, cause):
        self.pour_point_id = pour_point_id
        self.cause = cause
        super().__init__(f"basin {pour_point_id}: {cause}")

    def __reduce__(self):
        return (self.__class__, (self.pour_point_id, self.cause))


class ThresholdWarning(UserWarning):
    """The stream threshold area was lowered to obtain a non-empty network."""


class ConcavityWarning(UserWarning):
    """The best-fit concavity could not be estimated."""
