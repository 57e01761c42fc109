from __future__ import annotations


class ImportPipelineError(Exception):
    """Base class for import pipeline failures.

    ``status_code`` is the HTTP status the API layer answers with.
    """

    status_code = 400

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.message = message
        self.errors = list(errors or [])


# 上传文件不是预期格式的文档或表格
class UnsupportedFormatError(ImportPipelineError):
    status_code = 415


# 格式正确但无法解析
class ParseFailureError(ImportPipelineError):
    status_code = 422


# 批量表格存在无效行，``errors`` 中每行一条信息
class ValidationFailureError(ImportPipelineError):
    status_code = 422


class EmptyBatchError(ImportPipelineError):
    status_code = 422


class BatchTooLargeError(ImportPipelineError):
    status_code = 413


class NumberConflictError(ImportPipelineError):
    status_code = 409

    def __init__(self, message: str, conflicts: list | None = None):
        super().__init__(message)
        self.conflicts = list(conflicts or [])


# 对象存储读写失败
class StorageFailureError(ImportPipelineError):
    status_code = 502


# 章节写入失败
class PersistenceFailureError(ImportPipelineError):
    status_code = 500


class JobNotFoundError(ImportPipelineError):
    status_code = 404


class StoryNotFoundError(ImportPipelineError):
    status_code = 404


# 任务当前状态不允许该状态转换
class InvalidJobStateError(ImportPipelineError):
    status_code = 409


# 上传文件超过接口的大小限制
class FileTooLargeError(ImportPipelineError):
    status_code = 413
