"""MongoDB collection names owned by the resolution core."""


class CollectionNames:
    CACHE = "api_cache"
    CREDENTIALS = "credentials"
    FINGERPRINTS = "fingerprints"
    SERVICE_CONFIG = "service_config"
