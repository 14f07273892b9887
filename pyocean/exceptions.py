class ConfigurationError(Exception):
    """Invalid model configuration, detected while the model is constructed"""


class UnsupportedCombinationError(ConfigurationError):
    """Two components were requested that cannot be used together"""
