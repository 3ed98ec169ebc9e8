__all__ = ("CacheHeadersError", "ConfigurationError", "StoreUnavailableError", "ContractViolationError")


class CacheHeadersError(Exception): ...


class ConfigurationError(CacheHeadersError): ...


class StoreUnavailableError(CacheHeadersError): ...


class ContractViolationError(CacheHeadersError): ...
