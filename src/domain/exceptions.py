class EnrichmentException(Exception):
    """Base exception for all enrichment-related errors."""
    pass

class EntityNotFoundException(EnrichmentException):
    """Raised when a catalog entity does not exist."""
    def __init__(self, entity_id: str, message: str = "Entity not found"):
        self.entity_id = entity_id
        super().__init__(message)

class DatabaseException(EnrichmentException):
    """Raised when a catalog store operation fails."""
    pass

class ConfigurationException(EnrichmentException):
    """Raised when required settings are missing or malformed."""
    pass
