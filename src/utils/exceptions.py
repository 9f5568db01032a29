class PipelineError(Exception):
    pass

class ConfigurationError(PipelineError):
    pass

class StorageError(PipelineError):
    def __init__(self, message, operation=None):
        self.operation = operation
        super().__init__(message)

class EmbeddingProviderError(PipelineError):
    pass

class SummarizationError(PipelineError):
    pass

class AuthenticationError(PipelineError):
    pass
