"""Device registry: check-in protocol, adoption, groups and provisioning.

All state lives in a TreeStore laid out as::

    unknown/<DEVICE_ID>                            status text, mtime = last check-in
    adopted/<GROUP>/library.script                 provisioning script
    adopted/<GROUP>/<DEVICE_ID>/serial_number.txt  identity (the consumed marker)
    adopted/<GROUP>/<DEVICE_ID>/alias.txt
    adopted/<GROUP>/<DEVICE_ID>/phonehome          mtime = last check-in
    adopted/<GROUP>/<DEVICE_ID>/reboot             pending reboot sentinel

Nothing is cached: every call re-reads the store. Operator calls take an
authenticated RequestContext; the caller is responsible for verifying it.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional

from dosi.services.context import RequestContext
from dosi.store import StoreError, StoreKeyError, TreeStore, join_key
from dosi.utils.activity_log import log_activity

logger = logging.getLogger(__name__)

UNKNOWN_DIR = "unknown"
ADOPTED_DIR = "adopted"
SCRIPT_FILE = "library.script"
IDENTITY_FILE = "serial_number.txt"
ALIAS_FILE = "alias.txt"
PHONEHOME_FILE = "phonehome"
REBOOT_FILE = "reboot"

DEFAULT_STATUS_TEXT = "New client detected"


# --- Errors ---

class RegistryError(Exception):
    """Base class for registry failures; the message is safe to show callers."""


class InvalidRequest(RegistryError):
    pass


class Unauthorized(RegistryError):
    pass


class NotFound(RegistryError):
    pass


class Conflict(RegistryError):
    pass


class AlreadyExists(Conflict):
    pass


class NotEmpty(Conflict):
    pass


class StorageFailure(RegistryError):
    """The store failed for a reason other than a missing entry."""


# --- Results ---

class CheckInStatus(str, Enum):
    NEW = "NEW"
    PENDING = "PENDING"
    KNOWN = "KNOWN"
    REBOOT = "REBOOT"


@dataclass
class CheckInResult:
    status: CheckInStatus
    script: str = ""
    group: Optional[str] = None

    @property
    def response_text(self) -> str:
        """Plain-text body sent back to the device."""
        if self.status == CheckInStatus.KNOWN:
            return self.script
        return self.status.value


@dataclass
class PendingDevice:
    device_id: str
    status: str
    last_check_in: Optional[datetime]


@dataclass
class AdoptedDevice:
    device_id: str
    group: str
    alias: Optional[str] = None
    last_check_in: Optional[datetime] = None
    reboot_pending: bool = False


@dataclass
class GroupSummary:
    name: str
    device_count: int
    has_script: bool


@dataclass
class BatchFailure:
    device_id: str
    error: str


@dataclass
class BatchResult:
    succeeded: list[str] = field(default_factory=list)
    failed: list[BatchFailure] = field(default_factory=list)


# --- Input normalization ---

def _check_segment(value: str, what: str) -> None:
    # names end up in activity log lines, so no control characters either
    if "/" in value or "\\" in value or value in (".", "..") or not value.isprintable():
        raise InvalidRequest(f"{what} contains invalid characters.")


def normalize_device_id(raw: Optional[str]) -> str:
    """Uppercase and validate a device identifier (CPU serial)."""
    if raw is not None and not isinstance(raw, str):
        raise InvalidRequest("Device identifier must be a string.")
    value = (raw or "").strip().upper()
    if not value:
        raise InvalidRequest("Device identifier not provided.")
    _check_segment(value, "Device identifier")
    return value


def normalize_group_name(raw: Optional[str]) -> str:
    value = (raw or "").strip()
    if not value:
        raise InvalidRequest("Group name not provided.")
    _check_segment(value, "Group name")
    return value


class DeviceRegistry:
    def __init__(self, store: TreeStore, unknown_status_text: str = DEFAULT_STATUS_TEXT):
        self.store = store
        self.unknown_status_text = unknown_status_text

    # --- keys ---

    @staticmethod
    def _unknown_key(device_id: str) -> str:
        return join_key(UNKNOWN_DIR, device_id)

    @staticmethod
    def _group_key(group: str) -> str:
        return join_key(ADOPTED_DIR, group)

    @staticmethod
    def _record_key(group: str, device_id: str) -> str:
        return join_key(ADOPTED_DIR, group, device_id)

    @staticmethod
    def _script_key(group: str) -> str:
        return join_key(ADOPTED_DIR, group, SCRIPT_FILE)

    # --- plumbing ---

    @staticmethod
    def _log(ctx: RequestContext, message: str) -> None:
        log_activity(ctx.client_ip, message)

    @staticmethod
    def _require_operator(ctx: RequestContext) -> None:
        if not ctx.authenticated:
            raise Unauthorized("Operator authentication required.")

    @contextmanager
    def _storage(self, what: str):
        try:
            yield
        except StoreKeyError as e:
            raise NotFound(f"{what} not found.") from e
        except (StoreError, OSError) as e:
            logger.exception("Store failure while accessing %s", what)
            raise StorageFailure(f"Storage failure while accessing {what}.") from e

    def _child_dirs(self, key: str) -> list[str]:
        if not self.store.is_dir(key):
            return []
        return [n for n in self.store.list_dir(key) if self.store.is_dir(join_key(key, n))]

    def _group_names(self) -> list[str]:
        return self._child_dirs(ADOPTED_DIR)

    def _group_exists(self, group: str) -> bool:
        return self.store.is_dir(self._group_key(group))

    def _is_record(self, group: str, device_id: str) -> bool:
        return self.store.exists(join_key(self._record_key(group, device_id), IDENTITY_FILE))

    def _device_ids(self, group: str) -> list[str]:
        return [d for d in self._child_dirs(self._group_key(group)) if self._is_record(group, d)]

    def _locate(self, device_id: str) -> Optional[str]:
        """Name of the group holding ``device_id``, or None."""
        for group in self._group_names():
            if self._is_record(group, device_id):
                return group
        return None

    def _last_check_in(self, group: str, device_id: str) -> Optional[datetime]:
        record = self._record_key(group, device_id)
        return (self.store.modified_at(join_key(record, PHONEHOME_FILE))
                or self.store.modified_at(join_key(record, IDENTITY_FILE)))

    def _read_device(self, group: str, device_id: str) -> AdoptedDevice:
        record = self._record_key(group, device_id)
        alias_key = join_key(record, ALIAS_FILE)
        alias = self.store.read_text(alias_key) if self.store.exists(alias_key) else None
        return AdoptedDevice(
            device_id=device_id,
            group=group,
            alias=alias,
            last_check_in=self._last_check_in(group, device_id),
            reboot_pending=self.store.exists(join_key(record, REBOOT_FILE)),
        )

    def _read_script(self, group: str) -> str:
        key = self._script_key(group)
        return self.store.read_text(key) if self.store.exists(key) else ""

    def _require_record(self, ctx: RequestContext, group: str, device_id: str) -> str:
        if not self._is_record(group, device_id):
            self._log(ctx, f"Client {device_id} not found in group {group}.")
            raise NotFound(f"Device {device_id} not found in group {group}.")
        return self._record_key(group, device_id)

    def _require_group(self, ctx: RequestContext, group: str) -> None:
        if not self._group_exists(group):
            self._log(ctx, f"Group {group} not found.")
            raise NotFound(f"Group {group} not found.")

    # --- device check-in ---

    def check_in(self, ctx: RequestContext, raw_device_id: Optional[str]) -> CheckInResult:
        """Handle a device phoning home.

        Adopted devices get their group's provisioning script, or REBOOT once
        when a reboot is pending. Unknown devices are registered as pending.
        """
        try:
            device_id = normalize_device_id(raw_device_id)
        except InvalidRequest:
            self._log(ctx, "CPU serial number not provided.")
            raise

        with self._storage(f"device {device_id}"):
            group = self._locate(device_id)
            if group is not None:
                record = self._record_key(group, device_id)
                self.store.touch(join_key(record, PHONEHOME_FILE))
                reboot_key = join_key(record, REBOOT_FILE)
                if self.store.exists(reboot_key):
                    self.store.delete(reboot_key)
                    self._log(ctx, f"Reboot command delivered to {device_id} (group {group}).")
                    return CheckInResult(CheckInStatus.REBOOT, group=group)
                self._log(ctx, f"Known machine checked in: {device_id} (group {group}).")
                return CheckInResult(CheckInStatus.KNOWN, script=self._read_script(group), group=group)

            marker = self._unknown_key(device_id)
            if self.store.exists(marker):
                self.store.touch(marker)
                self._log(ctx, f"Pending machine checked in: {device_id}.")
                return CheckInResult(CheckInStatus.PENDING)

            self.store.write_text(marker, self.unknown_status_text)
            self._log(ctx, f"New client detected: {device_id}. Marker created.")
            return CheckInResult(CheckInStatus.NEW)

    # --- pending devices ---

    def list_pending(self, ctx: RequestContext) -> list[PendingDevice]:
        self._require_operator(ctx)
        with self._storage("pending devices"):
            if not self.store.is_dir(UNKNOWN_DIR):
                return []
            devices = []
            for name in self.store.list_dir(UNKNOWN_DIR):
                key = self._unknown_key(name)
                if self.store.is_dir(key):
                    continue
                devices.append(PendingDevice(
                    device_id=name,
                    status=self.store.read_text(key),
                    last_check_in=self.store.modified_at(key),
                ))
            return devices

    def delete_pending(self, ctx: RequestContext, raw_device_id: Optional[str]) -> None:
        self._require_operator(ctx)
        device_id = normalize_device_id(raw_device_id)
        with self._storage(f"pending device {device_id}"):
            marker = self._unknown_key(device_id)
            if not self.store.exists(marker):
                self._log(ctx, f"Client {device_id} not found in pending adoption list for deletion.")
                raise NotFound(f"Device {device_id} is not pending adoption.")
            self.store.delete(marker)
            self._log(ctx, f"Pending adoption entry for {device_id} deleted.")

    def adopt(self, ctx: RequestContext, raw_device_id: Optional[str], raw_group: Optional[str]) -> AdoptedDevice:
        """Move a pending device into ``group``, creating the group if needed.

        The marker file itself becomes the record's identity file, so the
        marker is consumed by a single store move. A crash after the record
        directory is created but before the move leaves an empty directory,
        which reconcile() removes.
        """
        self._require_operator(ctx)
        device_id = normalize_device_id(raw_device_id)
        group = normalize_group_name(raw_group)

        with self._storage(f"device {device_id}"):
            marker = self._unknown_key(device_id)
            if not self.store.exists(marker):
                self._log(ctx, f"Client {device_id} not found in pending adoption list.")
                raise NotFound(f"Device {device_id} is not pending adoption.")

            existing = self._locate(device_id)
            if existing is not None:
                self.store.delete(marker)
                self._log(ctx, f"Stale pending entry for {device_id} removed; already adopted into {existing}.")
                raise AlreadyExists(f"Device {device_id} is already adopted into group {existing}.")

            if not self._group_exists(group):
                self._log(ctx, f"Group {group} created.")

            record = self._record_key(group, device_id)
            if self.store.exists(record):
                # leftover of an interrupted adoption
                self.store.delete(record)
            self.store.make_dir(record)
            self.store.move(marker, join_key(record, IDENTITY_FILE))
            self._log(ctx, f"Client {device_id} adopted into group {group}.")
            return self._read_device(group, device_id)

    # --- adopted devices ---

    def list_adopted(self, ctx: RequestContext, raw_group: Optional[str] = None) -> list[AdoptedDevice]:
        self._require_operator(ctx)
        with self._storage("adopted devices"):
            if raw_group:
                group = normalize_group_name(raw_group)
                self._require_group(ctx, group)
                groups = [group]
            else:
                groups = self._group_names()
            return [self._read_device(g, d) for g in groups for d in self._device_ids(g)]

    def get_device(self, ctx: RequestContext, raw_device_id: Optional[str]) -> AdoptedDevice:
        self._require_operator(ctx)
        device_id = normalize_device_id(raw_device_id)
        with self._storage(f"device {device_id}"):
            group = self._locate(device_id)
            if group is None:
                raise NotFound(f"Device {device_id} is not adopted.")
            return self._read_device(group, device_id)

    def delete_adopted(self, ctx: RequestContext, raw_device_id: Optional[str], raw_group: Optional[str]) -> None:
        self._require_operator(ctx)
        device_id = normalize_device_id(raw_device_id)
        group = normalize_group_name(raw_group)
        with self._storage(f"device {device_id}"):
            record = self._require_record(ctx, group, device_id)
            self.store.delete(record)
            self._log(ctx, f"Adopted entry for {device_id} deleted from group {group}.")

    def move_device(self, ctx: RequestContext, raw_device_id: Optional[str], raw_group: Optional[str],
                    raw_target: Optional[str]) -> AdoptedDevice:
        """Move an adopted device to another group, keeping alias, timestamps and reboot flag."""
        self._require_operator(ctx)
        device_id = normalize_device_id(raw_device_id)
        group = normalize_group_name(raw_group)
        target = normalize_group_name(raw_target)

        with self._storage(f"device {device_id}"):
            record = self._require_record(ctx, group, device_id)
            if target == group:
                return self._read_device(group, device_id)
            if self._is_record(target, device_id):
                raise AlreadyExists(f"Device {device_id} already exists in group {target}.")
            if not self._group_exists(target):
                self._log(ctx, f"Group {target} created.")

            target_record = self._record_key(target, device_id)
            if self.store.exists(target_record):
                self.store.delete(target_record)
            self.store.make_dir(self._group_key(target))
            self.store.move(record, target_record)
            self._log(ctx, f"Client {device_id} moved from group {group} to {target}.")
            return self._read_device(target, device_id)

    def set_alias(self, ctx: RequestContext, raw_device_id: Optional[str], raw_group: Optional[str],
                  alias: Optional[str]) -> AdoptedDevice:
        self._require_operator(ctx)
        device_id = normalize_device_id(raw_device_id)
        group = normalize_group_name(raw_group)
        alias = (alias or "").strip()
        if not alias:
            raise InvalidRequest("Alias not provided.")

        with self._storage(f"device {device_id}"):
            record = self._require_record(ctx, group, device_id)
            self.store.write_text(join_key(record, ALIAS_FILE), alias)
            self._log(ctx, f"Alias for {device_id} in group {group} set to {alias!r}.")
            return self._read_device(group, device_id)

    def delete_alias(self, ctx: RequestContext, raw_device_id: Optional[str], raw_group: Optional[str]) -> AdoptedDevice:
        self._require_operator(ctx)
        device_id = normalize_device_id(raw_device_id)
        group = normalize_group_name(raw_group)

        with self._storage(f"device {device_id}"):
            record = self._require_record(ctx, group, device_id)
            alias_key = join_key(record, ALIAS_FILE)
            if self.store.exists(alias_key):
                self.store.delete(alias_key)
                self._log(ctx, f"Alias for {device_id} in group {group} deleted.")
            return self._read_device(group, device_id)

    def request_reboot(self, ctx: RequestContext, raw_device_id: Optional[str], raw_group: Optional[str]) -> AdoptedDevice:
        """Flag a device for reboot; the flag is cleared by its next check-in."""
        self._require_operator(ctx)
        device_id = normalize_device_id(raw_device_id)
        group = normalize_group_name(raw_group)

        with self._storage(f"device {device_id}"):
            record = self._require_record(ctx, group, device_id)
            self.store.touch(join_key(record, REBOOT_FILE))
            self._log(ctx, f"Reboot requested for {device_id} in group {group}.")
            return self._read_device(group, device_id)

    # --- groups ---

    def list_groups(self, ctx: RequestContext) -> list[GroupSummary]:
        self._require_operator(ctx)
        with self._storage("groups"):
            return [
                GroupSummary(
                    name=g,
                    device_count=len(self._device_ids(g)),
                    has_script=self.store.exists(self._script_key(g)),
                )
                for g in self._group_names()
            ]

    def create_group(self, ctx: RequestContext, raw_group: Optional[str]) -> GroupSummary:
        self._require_operator(ctx)
        group = normalize_group_name(raw_group)
        with self._storage(f"group {group}"):
            if self.store.exists(self._group_key(group)):
                self._log(ctx, f"Group {group} already exists.")
                raise AlreadyExists(f"Group {group} already exists.")
            self.store.make_dir(self._group_key(group))
            self._log(ctx, f"Group {group} created.")
            return GroupSummary(name=group, device_count=0, has_script=False)

    def delete_group(self, ctx: RequestContext, raw_group: Optional[str]) -> None:
        self._require_operator(ctx)
        group = normalize_group_name(raw_group)
        with self._storage(f"group {group}"):
            self._require_group(ctx, group)
            devices = self._device_ids(group)
            if devices:
                self._log(ctx, f"Refused to delete group {group}: it holds {len(devices)} device(s).")
                raise NotEmpty(f"Group {group} still holds {len(devices)} device(s).")
            self.store.delete(self._group_key(group))
            self._log(ctx, f"Group {group} deleted.")

    def get_script(self, ctx: RequestContext, raw_group: Optional[str]) -> str:
        self._require_operator(ctx)
        group = normalize_group_name(raw_group)
        with self._storage(f"group {group}"):
            self._require_group(ctx, group)
            return self._read_script(group)

    def set_script(self, ctx: RequestContext, raw_group: Optional[str], content: Optional[str]) -> None:
        """Replace the group's provisioning script; later check-ins see it immediately."""
        self._require_operator(ctx)
        group = normalize_group_name(raw_group)
        if content is None:
            raise InvalidRequest("Script content not provided.")
        with self._storage(f"group {group}"):
            self._require_group(ctx, group)
            self.store.write_text(self._script_key(group), content)
            self._log(ctx, f"Provisioning script for group {group} updated ({len(content)} chars).")

    # --- batch operations ---

    def batch_move(self, ctx: RequestContext, raw_device_ids: Iterable, raw_target: Optional[str]) -> BatchResult:
        """Move each device to ``target`` independently; failures are logged and skipped."""
        self._require_operator(ctx)
        target = normalize_group_name(raw_target)
        result = BatchResult()
        for raw in raw_device_ids:
            try:
                device_id = normalize_device_id(raw)
                with self._storage(f"device {device_id}"):
                    group = self._locate(device_id)
                if group is None:
                    raise NotFound(f"Device {device_id} is not adopted.")
                self.move_device(ctx, device_id, group, target)
                result.succeeded.append(device_id)
            except RegistryError as e:
                logger.warning("Batch move of %r to %s skipped: %s", raw, target, e)
                self._log(ctx, f"Batch move of {raw} to group {target} failed: {e}")
                result.failed.append(BatchFailure(device_id=str(raw), error=str(e)))
        return result

    def batch_delete(self, ctx: RequestContext, raw_device_ids: Iterable) -> BatchResult:
        """Delete each adopted or pending device independently; failures are logged and skipped."""
        self._require_operator(ctx)
        result = BatchResult()
        for raw in raw_device_ids:
            try:
                device_id = normalize_device_id(raw)
                with self._storage(f"device {device_id}"):
                    group = self._locate(device_id)
                if group is not None:
                    self.delete_adopted(ctx, device_id, group)
                else:
                    self.delete_pending(ctx, device_id)
                result.succeeded.append(device_id)
            except RegistryError as e:
                logger.warning("Batch delete of %r skipped: %s", raw, e)
                self._log(ctx, f"Batch delete of {raw} failed: {e}")
                result.failed.append(BatchFailure(device_id=str(raw), error=str(e)))
        return result

    # --- crash recovery ---

    def reconcile(self, ctx: Optional[RequestContext] = None) -> int:
        """Repair states an interrupted multi-step operation can leave behind.

        - record directories without an identity file are removed
        - a device adopted in several groups keeps only the most recently seen record
        - a pending marker for an adopted device is removed
        Returns the number of repairs made.
        """
        ctx = ctx or RequestContext.system()
        repairs = 0
        owners: dict[str, list[str]] = {}

        with self._storage("registry"):
            for group in self._group_names():
                for name in self._child_dirs(self._group_key(group)):
                    if not self._is_record(group, name):
                        self.store.delete(self._record_key(group, name))
                        repairs += 1
                        logger.warning("Removed incomplete record %s/%s", group, name)
                        self._log(ctx, f"Reconcile: removed incomplete record {name} in group {group}.")
                        continue
                    owners.setdefault(name, []).append(group)

            epoch = datetime.min.replace(tzinfo=timezone.utc)
            for device_id, groups in owners.items():
                if len(groups) > 1:
                    groups.sort(key=lambda g: self._last_check_in(g, device_id) or epoch, reverse=True)
                    for extra in groups[1:]:
                        self.store.delete(self._record_key(extra, device_id))
                        repairs += 1
                        logger.warning("Removed duplicate record of %s in group %s", device_id, extra)
                        self._log(ctx, f"Reconcile: removed duplicate record of {device_id} in group {extra}.")

                marker = self._unknown_key(device_id)
                if self.store.exists(marker):
                    self.store.delete(marker)
                    repairs += 1
                    logger.warning("Removed pending marker of adopted device %s", device_id)
                    self._log(ctx, f"Reconcile: removed pending entry of adopted device {device_id}.")

        if repairs:
            logger.info("Reconcile finished: %d repair(s)", repairs)
        return repairs
