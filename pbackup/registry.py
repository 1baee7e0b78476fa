"""
Component registry and backup context.

Every configurable component (file manager, storage, location, restore
policy) is identified by a (kind, type_id) pair. The registry maps those
pairs to factories so that serialized backup records can be turned back into
live objects. The registry is populated explicitly at process start and
passed around inside a BackupContext; nothing is discovered at runtime.
"""

import json
import logging
import os
from typing import Any, Callable, Dict, List, Optional


logger = logging.getLogger(__name__)

KINDS = ('file_manager', 'storage', 'location', 'restore_policy')


class RegistryError(Exception):
    """Raised when a component cannot be resolved from the registry."""
    pass


class Component:
    """
    Base class for configurable, serializable components.

    Components compare and hash by their configuration (``to_dict()``),
    never by identity, so two objects describing the same thing are
    interchangeable.
    """

    kind: str = None
    type_id: str = None

    def to_dict(self) -> Dict[str, Any]:
        """Configuration fields, excluding the type identifier."""
        raise NotImplementedError

    @classmethod
    def from_dict(cls, data: Dict[str, Any], registry: 'Registry') -> 'Component':
        raise NotImplementedError

    def describe(self) -> Dict[str, Any]:
        """Serializable reference: type identifier plus configuration."""
        description = {'type': self.type_id}
        description.update(self.to_dict())
        return description

    @property
    def display_name(self) -> str:
        return self.type_id

    def __eq__(self, other):
        if type(self) is not type(other):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __hash__(self):
        return hash((type(self).__name__, json.dumps(self.to_dict(), sort_keys=True)))

    def __repr__(self):
        fields = ' '.join(f"{key}={value!r}" for key, value in sorted(self.to_dict().items()))
        return f'<{type(self).__name__} {fields}>'


class Registry:
    """Mapping of (kind, type_id) to component factories."""

    def __init__(self):
        self._factories: Dict[str, Dict[str, Callable]] = {kind: {} for kind in KINDS}

    def register(self, kind: str, type_id: str, factory: Callable):
        """
        Register a factory for a component type.

        Args:
            kind: One of KINDS
            type_id: Identifier written into serialized records
            factory: Callable taking (data, registry) and returning a component
        """
        if kind not in self._factories:
            raise RegistryError(f"Unknown component kind: {kind}")
        self._factories[kind][type_id] = factory

    def register_class(self, cls):
        self.register(cls.kind, cls.type_id, cls.from_dict)
        return cls

    def types(self, kind: str) -> List[str]:
        if kind not in self._factories:
            raise RegistryError(f"Unknown component kind: {kind}")
        return sorted(self._factories[kind])

    def create(self, kind: str, data: Dict[str, Any]):
        """
        Build a component from its serialized description.

        Raises:
            RegistryError: If kind or type is unknown, or the factory rejects the data
        """
        if kind not in self._factories:
            raise RegistryError(f"Unknown component kind: {kind}")
        if not isinstance(data, dict) or 'type' not in data:
            raise RegistryError(f"Invalid {kind} description: {data!r}")

        type_id = data['type']
        factory = self._factories[kind].get(type_id)
        if factory is None:
            raise RegistryError(
                f"Unknown {kind} type: {type_id}. "
                f"Valid options: {self.types(kind)}"
            )

        fields = {key: value for key, value in data.items() if key != 'type'}
        try:
            return factory(fields, self)
        except (KeyError, TypeError, ValueError) as e:
            raise RegistryError(f"Invalid {kind} configuration for {type_id}: {e}")


def default_registry() -> Registry:
    """Registry with every built-in component type."""
    from pbackup.backup.sources import (
        DirectoryFileManager, ConfigOnlyFileManager,
        ReplaceRestorePolicy, OverwriteRestorePolicy
    )
    from pbackup.backup.compression import ZipStorage, TarStorage, NullStorage
    from pbackup.backup.locations import LocalDirectory, S3Location

    registry = Registry()
    for cls in (
        DirectoryFileManager, ConfigOnlyFileManager,
        ReplaceRestorePolicy, OverwriteRestorePolicy,
        ZipStorage, TarStorage, NullStorage,
        LocalDirectory, S3Location,
    ):
        registry.register_class(cls)
    return registry


class BackupContext:
    """
    Everything a backup or restore run needs, passed explicitly.

    Attributes:
        config: Configuration object the context was built from
        registry: Component registry
        serializer: RecordSerializer bound to the registry
        file_manager: File selection policy
        storage: Archival backend
        locations: Storage locations, in configuration order
        temp_dir: Working directory for archives and retrievals
        cycle_quantity: Number of backups to keep per location (0 = unlimited)
        cycle_days: Maximum backup age in days (0 = unlimited)
    """

    def __init__(self, config, registry, serializer, file_manager, storage, locations,
                 temp_dir: str, cycle_quantity: int = 0, cycle_days: int = 0):
        self.config = config
        self.registry = registry
        self.serializer = serializer
        self.file_manager = file_manager
        self.storage = storage
        self.locations = list(locations)
        self.temp_dir = temp_dir
        self.cycle_quantity = cycle_quantity
        self.cycle_days = cycle_days

    def __repr__(self):
        return (
            f'<BackupContext storage={self.storage.display_name} '
            f'locations={len(self.locations)}>'
        )


def build_context(config, registry: Optional[Registry] = None) -> BackupContext:
    """
    Build a BackupContext from a configuration object.

    Args:
        config: Config class or instance (see pbackup.config)
        registry: Registry to use (default: default_registry())

    Returns:
        BackupContext ready for executors and the scheduler

    Raises:
        RegistryError: If the configuration names unknown component types
    """
    from pbackup.backup.compression import storage_description
    from pbackup.backup.record import RecordSerializer

    registry = registry or default_registry()

    file_manager = registry.create('file_manager', {
        'type': config.BACKUP_FILE_MANAGER,
        'base_dir': config.BACKUP_SOURCE_DIR,
        'include_patterns': list(config.BACKUP_INCLUDE),
        'exclude_patterns': list(config.BACKUP_EXCLUDE),
        'restore_policy': {'type': config.BACKUP_RESTORE_POLICY},
    })

    try:
        storage = registry.create('storage', storage_description(config.BACKUP_STORAGE))
    except ValueError as e:
        raise RegistryError(str(e))

    locations = []
    for path in config.LOCAL_BACKUP_DIRS:
        locations.append(registry.create('location', {
            'type': 'local',
            'path': os.path.abspath(path),
            'enabled': True,
        }))

    if config.S3_BUCKET:
        locations.append(registry.create('location', {
            'type': 's3',
            'bucket_name': config.S3_BUCKET,
            'prefix': config.S3_PREFIX,
            'region': config.S3_REGION,
            'enabled': config.S3_ENABLED,
        }))

    logger.debug(f"Built context with {len(locations)} location(s)")

    return BackupContext(
        config=config,
        registry=registry,
        serializer=RecordSerializer(registry),
        file_manager=file_manager,
        storage=storage,
        locations=locations,
        temp_dir=config.TEMP_DIR,
        cycle_quantity=config.CYCLE_QUANTITY,
        cycle_days=config.CYCLE_DAYS,
    )
