"""
Copyright (c) 2024 Aiven Ltd
See LICENSE for details
"""


class MigrateException(Exception):
    pass


class PermanentException(MigrateException):
    pass


class NotFoundException(PermanentException):
    pass


class AlreadyExistsException(PermanentException):
    pass


class NodetoolException(PermanentException):
    pass


class NotPartOfInitException(PermanentException):
    pass


class StorageValidationException(PermanentException):
    pass


class KubeNodeNotFoundException(PermanentException):
    pass


# Node migration is not resumed half-way; whoever sees this needs to clean
# up the listed volumes (or finish the migration by hand).


class VolumeAlreadyExistsException(PermanentException):
    pass


class WaitTimeoutException(PermanentException):
    pass


class LeadershipLostException(PermanentException):
    pass


class ManagementApiException(PermanentException):
    pass


class TransientException(MigrateException):
    pass


class ConflictException(TransientException):
    pass
