"""Errors raised while resolving libtorch and generating build flags."""


class TorchBuildError(RuntimeError):
    """Base class for every failure that aborts the build."""


class LibtorchNotFound(TorchBuildError):
    pass


class ProbeScriptError(TorchBuildError):
    pass


class GpuUnavailable(TorchBuildError):
    pass


class InvalidArchSpec(TorchBuildError, ValueError):
    pass


class NoDeviceFound(TorchBuildError):
    pass


class DeviceQueryError(TorchBuildError):
    pass


class VersionMismatch(TorchBuildError):
    pass


class UnsupportedPlatform(TorchBuildError):
    pass


class DownloadError(TorchBuildError):
    pass


class UnsafeArchiveError(DownloadError):
    pass
