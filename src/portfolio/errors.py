"""Errors raised at the portfolio reader boundary."""


class PortfolioDataError(ValueError):
    """A household or holding row is malformed or missing a required field.

    Recovered per household: the scan logs a warning, skips the household,
    and carries on with the rest of the batch.
    """


class DataSourceUnavailableError(RuntimeError):
    """The portfolio aggregate source cannot be reached.

    Fatal for the current scan call; no partial result is returned.
    """
