from abc import ABC, abstractmethod


class BaseStorageService(ABC):
    def capabilities(self) -> dict[str, bool]:
        return {
            "datasets": True,
            "snapshots": True,
            "jobs": True,
            "nvmet": False,
            "iscsi": False,
            "nfs": False,
        }

    @abstractmethod
    def call(self, method, params=()):
        raise NotImplementedError

    @abstractmethod
    def dataset_create(self, name, properties=None):
        raise NotImplementedError

    @abstractmethod
    def dataset_delete(self, name, options=None):
        raise NotImplementedError

    @abstractmethod
    def dataset_set(self, name, properties):
        raise NotImplementedError

    @abstractmethod
    def dataset_inherit(self, name, prop):
        raise NotImplementedError

    @abstractmethod
    def dataset_get(self, name, properties):
        raise NotImplementedError

    @abstractmethod
    def snapshot_create(self, name, data=None):
        raise NotImplementedError

    @abstractmethod
    def snapshot_delete(self, name, options=None):
        raise NotImplementedError

    @abstractmethod
    def clone_create(self, snapshot, dataset, data=None):
        raise NotImplementedError

    @abstractmethod
    def core_wait_for_job(self, job_id, timeout=0, poll_interval_ms=None, cancel=None):
        raise NotImplementedError
