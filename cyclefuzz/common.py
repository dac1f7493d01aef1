class Error(Exception):
    pass


class ConfigError(Error):
    pass


class DiscoveryError(Error):
    pass


class ExecutionError(Error):
    pass


class FailureLogError(Error):
    pass


class WorkspaceError(Error):
    pass


class RepositoryError(Error):
    pass
