"""Typed CloudAPI operations.

:class:`CloudApi` is a thin facade over :class:`CloudApiTransport`: each
method maps to one CloudAPI endpoint, takes keyword arguments, returns the
decoded body and leaves the raw response on :attr:`CloudApi.last_response`.
The ``wait_for_*`` methods poll through :func:`tritoncli.waiters.poll_until`.
"""
from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Iterator, Mapping, Sequence
from datetime import UTC, datetime
from typing import Any
from urllib.parse import quote

import requests

from .common import parse_timestamp
from .errors import CloudApiError, ResourceNotFoundError, TritonError, UsageError
from .transport import CloudApiResponse, CloudApiTransport
from .waiters import DEFAULT_INTERVAL, CancelToken, poll_until
from .watcher import FrameAssembler

LOGGER = logging.getLogger(__name__)

MIGRATION_ACTIONS = ("begin", "sync", "pause", "switch", "automatic", "abort", "finalize")
AFFINITY_MIGRATION_ACTIONS = ("begin", "automatic")
ROLE_TAG_RESOURCE_TYPES = (
    "machines",
    "packages",
    "images",
    "fwrules",
    "networks",
    "users",
    "roles",
    "policies",
    "keys",
    "datacenters",
)
#: updatable field -> expected type, for ``FIELD=VALUE`` update commands
UPDATE_ACCOUNT_FIELDS = {
    "email": "string",
    "companyName": "string",
    "firstName": "string",
    "lastName": "string",
    "address": "string",
    "postalCode": "string",
    "city": "string",
    "state": "string",
    "country": "string",
    "phone": "string",
    "triton_cns_enabled": "boolean",
}
UPDATE_IMAGE_FIELDS = {
    "name": "string",
    "version": "string",
    "description": "string",
    "homepage": "string",
    "eula": "string",
    "acl": "array",
    "tags": "object",
}
UPDATE_FWRULE_FIELDS = {
    "enabled": "boolean",
    "log": "boolean",
    "rule": "string",
    "description": "string",
}
UPDATE_NETWORK_IP_FIELDS = {"reserved": "boolean"}
UPDATE_VLAN_FIELDS = {"name": "string", "description": "string"}
_ROLE_TAG_RESOURCE_RE = re.compile(r"^/[^/]{2,}/[^/]+")
_ROLE_TAG_SPLIT_RE = re.compile(r"\s*,\s*")


def _seg(value: object) -> str:
    return quote(str(value), safe="")


def _states_text(states: Sequence[str]) -> str:
    return json.dumps(list(states), separators=(",", ":"))


class CloudApi:
    """CloudAPI operations for one profile."""

    def __init__(
        self,
        transport: CloudApiTransport,
        *,
        cancel: CancelToken | None = None,
        wait_interval: float = DEFAULT_INTERVAL,
    ) -> None:
        """Bind the transport, cancellation token and default poll interval."""
        self.transport = transport
        self.cancel = cancel or CancelToken()
        self.wait_interval = wait_interval
        self.last_response: CloudApiResponse | None = None

    @property
    def account(self) -> str:
        """The account requests act on."""
        return self.transport.act_as or self.transport.account

    # -- plumbing --------------------------------------------------------

    def _call(
        self,
        method: str,
        path: str,
        *,
        query: Mapping[str, object] | None = None,
        body: object | None = None,
        absolute: bool = False,
    ) -> Any:
        self.cancel.raise_if_cancelled()
        response = self.transport.request(
            method, path, query=query, body=body, absolute=absolute
        )
        self.last_response = response
        return response.body

    def _list(self, path: str, query: Mapping[str, object] | None = None) -> list[Any]:
        body = self._call("GET", path, query=query)
        return list(body or [])

    def _wait(
        self,
        fetch: Callable[[], Any],
        done: Callable[[Any], bool],
        *,
        interval: float | None,
        timeout: float | None,
        describe: Callable[[float], str] | None = None,
    ) -> Any:
        return poll_until(
            fetch,
            done,
            interval=interval or self.wait_interval,
            timeout=timeout,
            cancel=self.cancel,
            describe=describe,
        )

    def ping(self) -> Any:
        """Check that CloudAPI answers (``GET /--ping``)."""
        response = self.transport.request("GET", "/--ping", absolute=True)
        self.last_response = response
        return response.body

    # -- account ---------------------------------------------------------

    def get_account(self) -> dict[str, Any]:
        """Return the account record."""
        return self._call("GET", "")

    def update_account(self, **fields: object) -> dict[str, Any]:
        """Update account fields such as ``email`` or ``companyName``."""
        return self._call("POST", "", body=fields)

    def get_account_limits(self) -> list[Any]:
        """Return provisioning limits."""
        return self._list("/limits")

    def get_config(self) -> dict[str, Any]:
        """Return the account config (``default_network`` and friends)."""
        return self._call("GET", "/config")

    def update_config(self, **fields: object) -> dict[str, Any]:
        """Replace account config fields."""
        return self._call("PUT", "/config", body=fields)

    def list_datacenters(self) -> dict[str, str]:
        """Return a ``name -> url`` mapping of datacenters."""
        return self._call("GET", "/datacenters") or {}

    def list_services(self) -> dict[str, str]:
        """Return a ``name -> url`` mapping of services."""
        return self._call("GET", "/services") or {}

    def list_keys(self) -> list[Any]:
        """List account SSH keys."""
        return self._list("/keys")

    def get_key(self, key_id: str) -> dict[str, Any]:
        """Return one account key by name or fingerprint."""
        return self._call("GET", f"/keys/{_seg(key_id)}")

    def create_key(self, *, key: str, name: str | None = None) -> dict[str, Any]:
        """Upload a public key."""
        body: dict[str, object] = {"key": key}
        if name:
            body["name"] = name
        return self._call("POST", "/keys", body=body)

    def delete_key(self, key_id: str) -> None:
        """Delete an account key."""
        self._call("DELETE", f"/keys/{_seg(key_id)}")

    # -- machines --------------------------------------------------------

    def list_machines(self, **filters: object) -> list[dict[str, Any]]:
        """List instances, following pagination unless ``limit`` is given."""
        query = {key: value for key, value in filters.items() if value is not None}
        self.cancel.raise_if_cancelled()
        items, response = self.transport.list_paged("/machines", query=query)
        self.last_response = response
        return items

    def get_machine(self, machine_id: str, *, credentials: bool = False) -> dict[str, Any]:
        """Return one instance."""
        query = {"credentials": "true"} if credentials else None
        return self._call("GET", f"/machines/{_seg(machine_id)}", query=query)

    def create_machine(self, **payload: object) -> dict[str, Any]:
        """Provision an instance from a ``CreateMachine`` body."""
        return self._call("POST", "/machines", body=payload)

    def delete_machine(self, machine_id: str) -> None:
        """Delete an instance."""
        self._call("DELETE", f"/machines/{_seg(machine_id)}")

    def _machine_action(self, machine_id: str, action: str, **extra: object) -> Any:
        body: dict[str, object] = {"action": action}
        body.update(extra)
        return self._call("POST", f"/machines/{_seg(machine_id)}", body=body)

    def start_machine(self, machine_id: str) -> Any:
        """Start a stopped instance."""
        return self._machine_action(machine_id, "start")

    def stop_machine(self, machine_id: str) -> Any:
        """Stop a running instance."""
        return self._machine_action(machine_id, "stop")

    def reboot_machine(self, machine_id: str) -> Any:
        """Reboot an instance."""
        return self._machine_action(machine_id, "reboot")

    def resize_machine(self, machine_id: str, *, package: str) -> Any:
        """Resize an instance to another package."""
        return self._machine_action(machine_id, "resize", package=package)

    def rename_machine(self, machine_id: str, *, name: str) -> Any:
        """Rename an instance."""
        return self._machine_action(machine_id, "rename", name=name)

    def enable_machine_firewall(self, machine_id: str) -> Any:
        """Turn the instance firewall on."""
        return self._machine_action(machine_id, "enable_firewall")

    def disable_machine_firewall(self, machine_id: str) -> Any:
        """Turn the instance firewall off."""
        return self._machine_action(machine_id, "disable_firewall")

    def enable_machine_deletion_protection(self, machine_id: str) -> Any:
        """Refuse deletes of the instance until protection is disabled."""
        return self._machine_action(machine_id, "enable_deletion_protection")

    def disable_machine_deletion_protection(self, machine_id: str) -> Any:
        """Allow the instance to be deleted again."""
        return self._machine_action(machine_id, "disable_deletion_protection")

    def machine_audit(self, machine_id: str) -> list[dict[str, Any]]:
        """Return the audit trail of actions taken on an instance."""
        return self._list(f"/machines/{_seg(machine_id)}/audit")

    def machine_exec(self, machine_id: str, argv: Sequence[str]) -> list[dict[str, Any]]:
        """Run *argv* in the instance and return its output events.

        Each event has a ``type`` of ``stdout``, ``stderr`` or ``end``; the
        ``end`` event carries the remote exit code in ``data.code``.
        """
        body = self._call("POST", f"/machines/{_seg(machine_id)}/exec", body={"argv": list(argv)})
        if isinstance(body, Mapping):
            return [dict(body)]
        return list(body or [])

    # -- waiters ---------------------------------------------------------

    def _get_machine_or_deleted(self, machine_id: str, states: Sequence[str]) -> dict[str, Any]:
        try:
            return self.get_machine(machine_id)
        except CloudApiError as exc:
            if exc.status_code in (404, 410) and "deleted" in states:
                return {"id": machine_id, "state": "deleted"}
            raise

    def wait_for_machine_states(
        self,
        machine_id: str,
        states: Sequence[str],
        *,
        interval: float | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Poll an instance until its ``state`` is one of *states*.

        A deleted instance answers 404/410, which satisfies ``deleted``.
        """
        return self._wait(
            lambda: self._get_machine_or_deleted(machine_id, states),
            lambda machine: machine.get("state") in states,
            interval=interval,
            timeout=timeout,
            describe=lambda elapsed: (
                f"timeout waiting for instance {machine_id} states "
                f"{_states_text(states)} (elapsed {round(elapsed)}s)"
            ),
        )

    def wait_for_machine_firewall_enabled(
        self,
        machine_id: str,
        state: bool,
        *,
        interval: float | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Poll until the instance ``firewall_enabled`` flag equals *state*."""
        return self._wait(
            lambda: self.get_machine(machine_id),
            lambda machine: bool(machine.get("firewall_enabled")) == state,
            interval=interval,
            timeout=timeout,
            describe=lambda elapsed: (
                f"timeout waiting for instance {machine_id} firewall_enabled="
                f"{str(state).lower()} (elapsed {round(elapsed)}s)"
            ),
        )

    def wait_for_deletion_protection_enabled(
        self,
        machine_id: str,
        state: bool,
        *,
        interval: float | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Poll until the instance ``deletion_protection`` flag equals *state*."""
        return self._wait(
            lambda: self.get_machine(machine_id),
            lambda machine: bool(machine.get("deletion_protection")) == state,
            interval=interval,
            timeout=timeout,
            describe=lambda elapsed: (
                f"timeout waiting for instance {machine_id} deletion_protection="
                f"{str(state).lower()} (elapsed {round(elapsed)}s)"
            ),
        )

    def wait_for_machine_audit(
        self,
        machine_id: str,
        action: str,
        *,
        since: datetime,
        interval: float | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Poll the audit trail for *action* recorded after *since*.

        Raises :class:`TritonError` when the audit record reports failure.
        """

        def find() -> dict[str, Any] | None:
            for record in self.machine_audit(machine_id):
                if record.get("action") != action or not record.get("time"):
                    continue
                if parse_timestamp(str(record["time"])) > since:
                    return record
            return None

        record = self._wait(
            find,
            lambda found: found is not None,
            interval=interval,
            timeout=timeout,
            describe=lambda elapsed: (
                f"timeout waiting for instance {machine_id} {action} "
                f"(elapsed {round(elapsed)}s)"
            ),
        )
        if record.get("success") != "yes":
            raise TritonError(f"{action} failed (audit id {record.get('id')})")
        return record

    def wait_for_image_states(
        self,
        image_id: str,
        states: Sequence[str],
        *,
        interval: float | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Poll an image until its ``state`` is one of *states*."""
        return self._wait(
            lambda: self.get_image(image_id),
            lambda image: image.get("state") in states,
            interval=interval,
            timeout=timeout,
            describe=lambda elapsed: (
                f"timeout waiting for image {image_id} states "
                f"{_states_text(states)} (elapsed {round(elapsed)}s)"
            ),
        )

    def wait_for_snapshot_states(
        self,
        machine_id: str,
        name: str,
        states: Sequence[str],
        *,
        interval: float | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Poll an instance snapshot until its ``state`` is one of *states*."""

        def fetch() -> dict[str, Any]:
            try:
                return self.get_machine_snapshot(machine_id, name)
            except CloudApiError as exc:
                if exc.status_code in (404, 410) and "deleted" in states:
                    return {"name": name, "state": "deleted"}
                raise

        return self._wait(
            fetch,
            lambda snapshot: snapshot.get("state") in states,
            interval=interval,
            timeout=timeout,
            describe=lambda elapsed: (
                f"timeout waiting for instance {machine_id} snap {name} states "
                f"{_states_text(states)} (elapsed {round(elapsed)}s)"
            ),
        )

    def wait_for_volume_states(
        self,
        volume_id: str,
        states: Sequence[str],
        *,
        interval: float | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Poll a volume until its ``state`` is one of *states*."""

        def fetch() -> dict[str, Any]:
            try:
                return self.get_volume(volume_id)
            except CloudApiError as exc:
                if exc.status_code == 404 and "deleted" in states:
                    return {"id": volume_id, "state": "deleted"}
                raise

        return self._wait(
            fetch,
            lambda volume: volume.get("state") in states,
            interval=interval,
            timeout=timeout,
            describe=lambda elapsed: (
                f"timeout waiting for state changes on volume {volume_id} "
                f"(elapsed {round(elapsed)}s)"
            ),
        )

    def wait_for_nic_states(
        self,
        machine_id: str,
        mac: str,
        states: Sequence[str],
        *,
        interval: float | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Poll an instance NIC until its ``state`` is one of *states*."""

        def fetch() -> dict[str, Any]:
            try:
                return self.get_nic(machine_id, mac)
            except CloudApiError as exc:
                if exc.status_code in (404, 410) and "deleted" in states:
                    return {"mac": mac, "state": "deleted"}
                raise

        return self._wait(
            fetch,
            lambda nic: nic.get("state") in states,
            interval=interval,
            timeout=timeout,
            describe=lambda elapsed: (
                f"timeout waiting for instance {machine_id} nic {mac} states "
                f"{_states_text(states)} (elapsed {round(elapsed)}s)"
            ),
        )

    def wait_for_disk_states(
        self,
        machine_id: str,
        disk_id: str,
        states: Sequence[str],
        *,
        interval: float | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Poll an instance disk until its ``state`` is one of *states*."""

        def fetch() -> dict[str, Any]:
            try:
                return self.get_machine_disk(machine_id, disk_id)
            except CloudApiError as exc:
                if exc.status_code in (404, 410) and "deleted" in states:
                    return {"id": disk_id, "state": "deleted"}
                raise

        return self._wait(
            fetch,
            lambda disk: disk.get("state") in states,
            interval=interval,
            timeout=timeout,
            describe=lambda elapsed: (
                f"timeout waiting for instance {machine_id} disk {disk_id} states "
                f"{_states_text(states)} (elapsed {round(elapsed)}s)"
            ),
        )

    # -- tags ------------------------------------------------------------

    def list_machine_tags(self, machine_id: str) -> dict[str, Any]:
        """Return all tags of an instance."""
        return self._call("GET", f"/machines/{_seg(machine_id)}/tags") or {}

    def get_machine_tag(self, machine_id: str, tag: str) -> Any:
        """Return the value of one tag."""
        return self._call("GET", f"/machines/{_seg(machine_id)}/tags/{_seg(tag)}")

    def add_machine_tags(self, machine_id: str, tags: Mapping[str, object]) -> dict[str, Any]:
        """Add or update tags; returns the full tag set."""
        return self._call("POST", f"/machines/{_seg(machine_id)}/tags", body=dict(tags))

    def replace_machine_tags(self, machine_id: str, tags: Mapping[str, object]) -> dict[str, Any]:
        """Replace every tag of an instance."""
        return self._call("PUT", f"/machines/{_seg(machine_id)}/tags", body=dict(tags))

    def delete_machine_tag(self, machine_id: str, tag: str) -> None:
        """Delete one tag."""
        self._call("DELETE", f"/machines/{_seg(machine_id)}/tags/{_seg(tag)}")

    def delete_machine_tags(self, machine_id: str) -> None:
        """Delete every tag of an instance."""
        self._call("DELETE", f"/machines/{_seg(machine_id)}/tags")

    # -- metadata --------------------------------------------------------

    def list_machine_metadata(self, machine_id: str, *, credentials: bool = False) -> dict[str, Any]:
        """Return all metadata of an instance."""
        query = {"credentials": "true"} if credentials else None
        return self._call("GET", f"/machines/{_seg(machine_id)}/metadata", query=query) or {}

    def get_machine_metadata(self, machine_id: str, key: str) -> Any:
        """Return the value of one metadata key."""
        return self._call("GET", f"/machines/{_seg(machine_id)}/metadata/{_seg(key)}")

    def update_machine_metadata(
        self, machine_id: str, metadata: Mapping[str, object]
    ) -> dict[str, Any]:
        """Add or update metadata keys; returns the full metadata.

        Keys are sent in the ``metadata.KEY`` form CreateMachine also uses.
        """
        body = {f"metadata.{key}": value for key, value in metadata.items()}
        return self._call("POST", f"/machines/{_seg(machine_id)}/metadata", body=body)

    def delete_machine_metadata(self, machine_id: str, key: str) -> None:
        """Delete one metadata key."""
        self._call("DELETE", f"/machines/{_seg(machine_id)}/metadata/{_seg(key)}")

    def delete_all_machine_metadata(self, machine_id: str) -> None:
        """Delete every metadata key of an instance."""
        self._call("DELETE", f"/machines/{_seg(machine_id)}/metadata")

    # -- snapshots -------------------------------------------------------

    def create_machine_snapshot(self, machine_id: str, *, name: str | None = None) -> dict[str, Any]:
        """Snapshot an instance."""
        body = {"name": name} if name else {}
        return self._call("POST", f"/machines/{_seg(machine_id)}/snapshots", body=body)

    def list_machine_snapshots(self, machine_id: str) -> list[dict[str, Any]]:
        """List an instance's snapshots."""
        return self._list(f"/machines/{_seg(machine_id)}/snapshots")

    def get_machine_snapshot(self, machine_id: str, name: str) -> dict[str, Any]:
        """Return one snapshot."""
        return self._call("GET", f"/machines/{_seg(machine_id)}/snapshots/{_seg(name)}")

    def start_machine_from_snapshot(self, machine_id: str, name: str) -> Any:
        """Boot an instance from one of its snapshots."""
        return self._call("POST", f"/machines/{_seg(machine_id)}/snapshots/{_seg(name)}")

    def delete_machine_snapshot(self, machine_id: str, name: str) -> None:
        """Delete a snapshot."""
        self._call("DELETE", f"/machines/{_seg(machine_id)}/snapshots/{_seg(name)}")

    # -- disks -----------------------------------------------------------

    def list_machine_disks(self, machine_id: str) -> list[dict[str, Any]]:
        """List an instance's disks."""
        return self._list(f"/machines/{_seg(machine_id)}/disks")

    def get_machine_disk(self, machine_id: str, disk_id: str) -> dict[str, Any]:
        """Return one disk."""
        return self._call("GET", f"/machines/{_seg(machine_id)}/disks/{_seg(disk_id)}")

    def create_machine_disk(self, machine_id: str, *, size: int | str) -> dict[str, Any]:
        """Add a disk (size in MiB, or ``remaining``)."""
        return self._call("POST", f"/machines/{_seg(machine_id)}/disks", body={"size": size})

    def resize_machine_disk(
        self,
        machine_id: str,
        disk_id: str,
        *,
        size: int,
        dangerous_allow_shrink: bool = False,
    ) -> dict[str, Any]:
        """Resize a disk; shrinking must be allowed explicitly."""
        body = {"size": size, "dangerous_allow_shrink": dangerous_allow_shrink}
        return self._call(
            "POST", f"/machines/{_seg(machine_id)}/disks/{_seg(disk_id)}", body=body
        )

    def delete_machine_disk(self, machine_id: str, disk_id: str) -> None:
        """Delete a disk."""
        self._call("DELETE", f"/machines/{_seg(machine_id)}/disks/{_seg(disk_id)}")

    # -- nics ------------------------------------------------------------

    def add_nic(
        self, machine_id: str, *, network: object, primary: bool | None = None
    ) -> dict[str, Any]:
        """Attach a NIC on *network* (an id or a NIC spec object)."""
        body: dict[str, object] = {"network": network}
        if primary is not None:
            body["primary"] = primary
        return self._call("POST", f"/machines/{_seg(machine_id)}/nics", body=body)

    def list_nics(self, machine_id: str) -> list[dict[str, Any]]:
        """List an instance's NICs."""
        return self._list(f"/machines/{_seg(machine_id)}/nics")

    def get_nic(self, machine_id: str, mac: str) -> dict[str, Any]:
        """Return one NIC by MAC address."""
        return self._call("GET", f"/machines/{_seg(machine_id)}/nics/{_seg(_mac_path(mac))}")

    def remove_nic(self, machine_id: str, mac: str) -> None:
        """Detach a NIC."""
        self._call("DELETE", f"/machines/{_seg(machine_id)}/nics/{_seg(_mac_path(mac))}")

    # -- firewall rules --------------------------------------------------

    def create_firewall_rule(
        self, *, rule: str, enabled: bool = False, description: str | None = None
    ) -> dict[str, Any]:
        """Create a firewall rule."""
        body: dict[str, object] = {"rule": rule, "enabled": enabled}
        if description:
            body["description"] = description
        return self._call("POST", "/fwrules", body=body)

    def list_firewall_rules(self) -> list[dict[str, Any]]:
        """List firewall rules."""
        return self._list("/fwrules")

    def get_firewall_rule(self, rule_id: str) -> dict[str, Any]:
        """Return one firewall rule."""
        return self._call("GET", f"/fwrules/{_seg(rule_id)}")

    def update_firewall_rule(self, rule_id: str, **fields: object) -> dict[str, Any]:
        """Update ``rule``, ``enabled`` or ``description`` of a rule."""
        return self._call("POST", f"/fwrules/{_seg(rule_id)}", body=fields)

    def enable_firewall_rule(self, rule_id: str) -> dict[str, Any]:
        """Enable a firewall rule."""
        return self._call("POST", f"/fwrules/{_seg(rule_id)}/enable", body={})

    def disable_firewall_rule(self, rule_id: str) -> dict[str, Any]:
        """Disable a firewall rule."""
        return self._call("POST", f"/fwrules/{_seg(rule_id)}/disable", body={})

    def delete_firewall_rule(self, rule_id: str) -> None:
        """Delete a firewall rule."""
        self._call("DELETE", f"/fwrules/{_seg(rule_id)}")

    def list_machine_firewall_rules(self, machine_id: str) -> list[dict[str, Any]]:
        """List rules that affect an instance."""
        return self._list(f"/machines/{_seg(machine_id)}/fwrules")

    def list_firewall_rule_machines(self, rule_id: str) -> list[dict[str, Any]]:
        """List instances a rule applies to."""
        return self._list(f"/fwrules/{_seg(rule_id)}/machines")

    # -- networks --------------------------------------------------------

    def list_networks(self) -> list[dict[str, Any]]:
        """List networks available to the account."""
        return self._list("/networks")

    def get_network(self, network_id: str) -> dict[str, Any]:
        """Return one network."""
        return self._call("GET", f"/networks/{_seg(network_id)}")

    def list_network_ips(self, network_id: str) -> list[dict[str, Any]]:
        """List IPs of a network."""
        return self._list(f"/networks/{_seg(network_id)}/ips")

    def get_network_ip(self, network_id: str, ip: str) -> dict[str, Any]:
        """Return one network IP."""
        return self._call("GET", f"/networks/{_seg(network_id)}/ips/{_seg(ip)}")

    def update_network_ip(self, network_id: str, ip: str, **fields: object) -> dict[str, Any]:
        """Reserve or free an IP (``reserved`` field)."""
        return self._call("PUT", f"/networks/{_seg(network_id)}/ips/{_seg(ip)}", body=fields)

    def list_fabric_vlans(self) -> list[dict[str, Any]]:
        """List fabric VLANs."""
        return self._list("/fabrics/default/vlans")

    def get_fabric_vlan(self, vlan_id: int) -> dict[str, Any]:
        """Return one fabric VLAN."""
        return self._call("GET", f"/fabrics/default/vlans/{int(vlan_id)}")

    def create_fabric_vlan(self, *, vlan_id: int, name: str, description: str | None = None) -> dict[str, Any]:
        """Create a fabric VLAN."""
        body: dict[str, object] = {"vlan_id": int(vlan_id), "name": name}
        if description:
            body["description"] = description
        return self._call("POST", "/fabrics/default/vlans", body=body)

    def update_fabric_vlan(self, vlan_id: int, **fields: object) -> dict[str, Any]:
        """Update a fabric VLAN's name or description."""
        return self._call("POST", f"/fabrics/default/vlans/{int(vlan_id)}", body=fields)

    def delete_fabric_vlan(self, vlan_id: int) -> None:
        """Delete a fabric VLAN."""
        self._call("DELETE", f"/fabrics/default/vlans/{int(vlan_id)}")

    def list_fabric_networks(self, vlan_id: int) -> list[dict[str, Any]]:
        """List fabric networks on a VLAN."""
        return self._list(f"/fabrics/default/vlans/{int(vlan_id)}/networks")

    def create_fabric_network(self, vlan_id: int, **fields: object) -> dict[str, Any]:
        """Create a fabric network on a VLAN."""
        return self._call("POST", f"/fabrics/default/vlans/{int(vlan_id)}/networks", body=fields)

    def delete_fabric_network(self, vlan_id: int, network_id: str) -> None:
        """Delete a fabric network."""
        self._call("DELETE", f"/fabrics/default/vlans/{int(vlan_id)}/networks/{_seg(network_id)}")

    # -- images and packages ---------------------------------------------

    def list_images(self, **filters: object) -> list[dict[str, Any]]:
        """List images (``state=all`` includes inactive ones)."""
        return self._list("/images", {k: v for k, v in filters.items() if v is not None})

    def get_image(self, image_id: str) -> dict[str, Any]:
        """Return one image."""
        return self._call("GET", f"/images/{_seg(image_id)}")

    def delete_image(self, image_id: str) -> None:
        """Delete an image."""
        self._call("DELETE", f"/images/{_seg(image_id)}")

    def update_image(self, image_id: str, **fields: object) -> dict[str, Any]:
        """Update image attributes."""
        return self._call("POST", f"/images/{_seg(image_id)}", query={"action": "update"}, body=fields)

    def clone_image(self, image_id: str) -> dict[str, Any]:
        """Copy a shared image into the account."""
        return self._call("POST", f"/images/{_seg(image_id)}", query={"action": "clone"}, body={})

    def export_image(self, image_id: str, *, manta_path: str) -> dict[str, Any]:
        """Export an image to Manta."""
        return self._call(
            "POST",
            f"/images/{_seg(image_id)}",
            body={"action": "export", "manta_path": manta_path},
        )

    def create_image_from_machine(
        self,
        *,
        machine: str,
        name: str,
        version: str,
        **fields: object,
    ) -> dict[str, Any]:
        """Create an image from a stopped instance."""
        body: dict[str, object] = {"machine": machine, "name": name, "version": version}
        body.update({k: v for k, v in fields.items() if v is not None})
        return self._call("POST", "/images", body=body)

    def share_image(self, image_id: str, account: str) -> dict[str, Any]:
        """Add *account* to the image ACL."""
        image = self.get_image(image_id)
        acl = list(image.get("acl") or [])
        if account not in acl:
            acl.append(account)
        return self.update_image(image_id, acl=acl)

    def unshare_image(self, image_id: str, account: str) -> dict[str, Any]:
        """Remove *account* from the image ACL."""
        image = self.get_image(image_id)
        acl = list(image.get("acl") or [])
        if account not in acl:
            raise TritonError(f"image {image_id} is not shared with account {account}")
        acl.remove(account)
        return self.update_image(image_id, acl=acl)

    def import_image_from_datacenter(self, image_id: str, datacenter: str) -> dict[str, Any]:
        """Import an image from *datacenter* of the same cloud into this one."""
        return self._call(
            "POST",
            "/images",
            query={"action": "import-from-datacenter", "datacenter": datacenter, "id": image_id},
            body={},
        )

    def for_datacenter(self, url: str) -> CloudApi:
        """Return a facade for another datacenter, sharing identity and cancellation."""
        return CloudApi(self.transport.for_url(url), cancel=self.cancel, wait_interval=self.wait_interval)

    def copy_image_to_datacenter(self, image_id: str, datacenter: str) -> dict[str, Any]:
        """Copy an image of this datacenter into *datacenter*.

        The import is requested from the target datacenter, naming this one
        as the source.
        """
        datacenters = self.list_datacenters()
        target_url = datacenters.get(datacenter)
        if not target_url:
            raise ResourceNotFoundError(f'no datacenter named "{datacenter}"')
        here = self.transport.url
        source = next((name for name, url in datacenters.items() if str(url).rstrip("/") == here), None)
        if source is None:
            raise TritonError(f"cannot determine the datacenter name of {here}")
        if source == datacenter:
            raise UsageError(f'image {image_id} is already in datacenter "{datacenter}"')
        return self.for_datacenter(str(target_url)).import_image_from_datacenter(image_id, source)

    def list_packages(self, **filters: object) -> list[dict[str, Any]]:
        """List packages."""
        return self._list("/packages", {k: v for k, v in filters.items() if v is not None})

    def get_package(self, package_id: str) -> dict[str, Any]:
        """Return one package by id or name."""
        return self._call("GET", f"/packages/{_seg(package_id)}")

    # -- volumes ---------------------------------------------------------

    def list_volumes(self, **filters: object) -> list[dict[str, Any]]:
        """List volumes."""
        return self._list("/volumes", {k: v for k, v in filters.items() if v is not None})

    def get_volume(self, volume_id: str) -> dict[str, Any]:
        """Return one volume."""
        return self._call("GET", f"/volumes/{_seg(volume_id)}")

    def create_volume(self, **payload: object) -> dict[str, Any]:
        """Create a volume."""
        return self._call("POST", "/volumes", body={k: v for k, v in payload.items() if v is not None})

    def delete_volume(self, volume_id: str) -> None:
        """Delete a volume."""
        self._call("DELETE", f"/volumes/{_seg(volume_id)}")

    def list_volume_sizes(self, *, volume_type: str | None = None) -> list[dict[str, Any]]:
        """List the volume sizes the datacenter offers."""
        return self._list("/volumesizes", {"type": volume_type} if volume_type else None)

    # -- rbac ------------------------------------------------------------

    def list_users(self) -> list[dict[str, Any]]:
        """List RBAC sub-users."""
        return self._list("/users")

    def get_user(self, user_id: str, *, membership: bool = False) -> dict[str, Any]:
        """Return one sub-user, optionally with role membership."""
        query = {"membership": "true"} if membership else None
        return self._call("GET", f"/users/{_seg(user_id)}", query=query)

    def create_user(self, **fields: object) -> dict[str, Any]:
        """Create a sub-user."""
        return self._call("POST", "/users", body=fields)

    def update_user(self, user_id: str, **fields: object) -> dict[str, Any]:
        """Update a sub-user."""
        return self._call("POST", f"/users/{_seg(user_id)}", body=fields)

    def delete_user(self, user_id: str) -> None:
        """Delete a sub-user."""
        self._call("DELETE", f"/users/{_seg(user_id)}")

    def list_user_keys(self, user_id: str) -> list[dict[str, Any]]:
        """List a sub-user's SSH keys."""
        return self._list(f"/users/{_seg(user_id)}/keys")

    def get_user_key(self, user_id: str, key_id: str) -> dict[str, Any]:
        """Return one sub-user key."""
        return self._call("GET", f"/users/{_seg(user_id)}/keys/{_seg(key_id)}")

    def create_user_key(self, user_id: str, *, key: str, name: str | None = None) -> dict[str, Any]:
        """Upload a key for a sub-user."""
        body: dict[str, object] = {"key": key}
        if name:
            body["name"] = name
        return self._call("POST", f"/users/{_seg(user_id)}/keys", body=body)

    def delete_user_key(self, user_id: str, key_id: str) -> None:
        """Delete a sub-user key."""
        self._call("DELETE", f"/users/{_seg(user_id)}/keys/{_seg(key_id)}")

    def list_roles(self) -> list[dict[str, Any]]:
        """List RBAC roles."""
        return self._list("/roles")

    def get_role(self, role_id: str) -> dict[str, Any]:
        """Return one role."""
        return self._call("GET", f"/roles/{_seg(role_id)}")

    def create_role(self, **fields: object) -> dict[str, Any]:
        """Create a role."""
        return self._call("POST", "/roles", body=fields)

    def update_role(self, role_id: str, **fields: object) -> dict[str, Any]:
        """Update a role."""
        return self._call("POST", f"/roles/{_seg(role_id)}", body=fields)

    def delete_role(self, role_id: str) -> None:
        """Delete a role."""
        self._call("DELETE", f"/roles/{_seg(role_id)}")

    def list_policies(self) -> list[dict[str, Any]]:
        """List RBAC policies."""
        return self._list("/policies")

    def get_policy(self, policy_id: str) -> dict[str, Any]:
        """Return one policy."""
        return self._call("GET", f"/policies/{_seg(policy_id)}")

    def create_policy(self, **fields: object) -> dict[str, Any]:
        """Create a policy."""
        return self._call("POST", "/policies", body=fields)

    def update_policy(self, policy_id: str, **fields: object) -> dict[str, Any]:
        """Update a policy."""
        return self._call("POST", f"/policies/{_seg(policy_id)}", body=fields)

    def delete_policy(self, policy_id: str) -> None:
        """Delete a policy."""
        self._call("DELETE", f"/policies/{_seg(policy_id)}")

    # -- role tags -------------------------------------------------------

    def role_tag_resource(self, resource_type: str, resource_id: str | None = None) -> str:
        """Return the ``/:account/:type/:id`` URL path used for role tags."""
        path = f"/{_seg(self.account)}/{resource_type}"
        if resource_id:
            path += f"/{_seg(resource_id)}"
        return path

    def get_role_tags(self, resource: str) -> list[str]:
        """Return the role tags on *resource* (read from the ``role-tag`` header)."""
        _validate_role_tag_resource(resource)
        self.cancel.raise_if_cancelled()
        response = self.transport.request("GET", resource, absolute=True)
        self.last_response = response
        header = response.header("role-tag") or ""
        return [tag for tag in _ROLE_TAG_SPLIT_RE.split(header.strip()) if tag.strip()]

    def set_role_tags(self, resource: str, role_tags: Sequence[str]) -> dict[str, Any]:
        """Replace the role tags on *resource*."""
        _validate_role_tag_resource(resource)
        return self._call("PUT", resource, body={"role-tag": list(role_tags)}, absolute=True)

    # -- migrations ------------------------------------------------------

    def migrate_machine(
        self, machine_id: str, *, action: str, affinity: Sequence[str] | None = None
    ) -> dict[str, Any]:
        """Run one migration *action* on an instance."""
        if action not in MIGRATION_ACTIONS:
            raise UsageError(f"Unsupported migration action {action}")
        body: dict[str, object] = {"action": action}
        if affinity:
            if action not in AFFINITY_MIGRATION_ACTIONS:
                raise UsageError(f"Cannot set affinity for action {action}")
            body["affinity"] = list(affinity)
        return self._call("POST", f"/machines/{_seg(machine_id)}/migrate", body=body)

    def estimate_migration(self, machine_id: str) -> dict[str, Any]:
        """Return the server's migration size/time estimate."""
        return self._call(
            "POST", f"/machines/{_seg(machine_id)}/migrate", body={"action": "estimate"}
        )

    def get_migration(self, machine_id: str) -> dict[str, Any]:
        """Return the migration record of an instance."""
        return self._call("GET", f"/migrations/{_seg(machine_id)}")

    def list_migrations(self) -> list[dict[str, Any]]:
        """List the account's migrations."""
        return self._list("/migrations")

    def watch_migration(self, machine_id: str) -> Iterator[dict[str, Any]]:
        """Yield migration progress events in server order.

        The response body is read chunk by chunk; the socket is closed when the
        generator finishes, fails or is closed early.
        """
        self.cancel.raise_if_cancelled()
        response = self.transport.stream(
            "POST", f"/machines/{_seg(machine_id)}/migrate", query={"action": "watch"}
        )
        assembler = FrameAssembler()
        try:
            for chunk in response.iter_content(chunk_size=None):
                self.cancel.raise_if_cancelled()
                if not chunk:
                    continue
                yield from assembler.feed(chunk)
            yield from assembler.flush()
        except requests.exceptions.RequestException as exc:
            raise TritonError(f"error watching migration of {machine_id}: {exc}", cause=exc) from exc
        finally:
            response.close()


def _mac_path(mac: str) -> str:
    return mac.replace(":", "")


def _validate_role_tag_resource(resource: str) -> None:
    if not _ROLE_TAG_RESOURCE_RE.match(resource):
        raise UsageError(f'invalid resource "{resource}": must match "/:account/:type..."')
    parts = resource.split("/")
    if len(parts) < 3 or parts[2] not in ROLE_TAG_RESOURCE_TYPES:
        raise UsageError(
            f'invalid resource "{resource}": resource type must be one of: '
            + ", ".join(ROLE_TAG_RESOURCE_TYPES)
        )


def utcnow() -> datetime:
    """Current time as an aware UTC datetime (used for audit waits)."""
    return datetime.now(UTC)


__all__ = [
    "AFFINITY_MIGRATION_ACTIONS",
    "CloudApi",
    "MIGRATION_ACTIONS",
    "ROLE_TAG_RESOURCE_TYPES",
    "UPDATE_ACCOUNT_FIELDS",
    "UPDATE_FWRULE_FIELDS",
    "UPDATE_IMAGE_FIELDS",
    "UPDATE_NETWORK_IP_FIELDS",
    "UPDATE_VLAN_FIELDS",
    "utcnow",
]
