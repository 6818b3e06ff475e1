# RJ Auto Metadata
# Copyright (C) 2025 Riiicil
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

# src/api/errors.py


class MetadataToolError(Exception):
    pass


class AnalysisError(MetadataToolError):
    """
    Provider call failed. `status_code` is the HTTP status when there was one;
    `transient` marks network-level failures worth another attempt.
    """

    def __init__(self, message, status_code=None, transient=False):
        super().__init__(message)
        self.status_code = status_code
        self.transient = transient


class RateLimitError(AnalysisError):
    pass


class ProviderHardStopError(AnalysisError):
    """HTTP 400 from a provider. The whole batch must stop."""

    def __init__(self, message, status_code=400):
        super().__init__(message, status_code=status_code)


class ResponseFormatError(AnalysisError):
    pass


class VideoProcessingError(MetadataToolError):
    pass


class MetadataWriteError(MetadataToolError):
    pass


class SettingsError(MetadataToolError):
    pass


class BatchStartError(MetadataToolError):
    pass


class BatchAlreadyRunningError(MetadataToolError):
    pass
