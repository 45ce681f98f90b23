"""Compute provider backed by the ``doctl`` CLI."""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError

from ..external.runner import CommandRunner, ToolError
from .models import CreateDropletArgs, Droplet, Image, Region, Size, Snapshot, SshKey

logger = logging.getLogger(__name__)

REGIONS: tuple[tuple[str, str, bool], ...] = (
    ("nyc1", "New York 1", True),
    ("sfo1", "San Francisco 1", False),
    ("nyc2", "New York 2", True),
    ("ams2", "Amsterdam 2", False),
    ("sgp1", "Singapore 1", True),
    ("lon1", "London 1", True),
    ("nyc3", "New York 3", True),
    ("ams3", "Amsterdam 3", True),
    ("fra1", "Frankfurt 1", True),
    ("tor1", "Toronto 1", True),
    ("sfo2", "San Francisco 2", True),
    ("blr1", "Bangalore 1", True),
    ("sfo3", "San Francisco 3", True),
    ("syd1", "Sydney 1", True),
    ("atl1", "Atlanta 1", True),
)


class ProviderError(RuntimeError):
    """Raised when provider output cannot be interpreted."""


def map_droplet(raw: dict[str, Any]) -> Droplet:
    public_ip = private_ip = None
    networks = raw.get("networks") or {}
    for net in networks.get("v4") or []:
        kind = net.get("type")
        if kind == "public":
            public_ip = net.get("ip_address")
        elif kind == "private":
            private_ip = net.get("ip_address")
    region = raw.get("region") or {}
    return Droplet(
        id=raw["id"],
        name=raw["name"],
        status=raw["status"],
        region=region.get("slug", "") if isinstance(region, dict) else str(region),
        size=raw.get("size_slug"),
        public_ipv4=public_ip,
        private_ipv4=private_ip,
        created_at=raw.get("created_at"),
        tags=raw.get("tags") or [],
    )


def build_create_command(args: CreateDropletArgs) -> list[str]:
    cmd = [
        "compute",
        "droplet",
        "create",
        args.name,
        "--size",
        args.size,
        "--image",
        args.image,
        "--wait",
    ]
    if args.region and args.region.strip():
        cmd.extend(["--region", args.region])
    if args.ssh_keys:
        cmd.extend(["--ssh-keys", ",".join(args.ssh_keys)])
    if args.tags:
        cmd.extend(["--tag-names", ",".join(args.tags)])
    return cmd


class DoctlProvider:
    """List, create and delete droplets and their catalogue through ``doctl``."""

    def __init__(self, runner: CommandRunner | None = None) -> None:
        self._runner = runner or CommandRunner("doctl")

    @property
    def runner(self) -> CommandRunner:
        return self._runner

    def _json(self, *args: str) -> Any:
        stdout = self._runner.check_output(*args, "-o", "json", label="doctl")
        try:
            return json.loads(stdout)
        except ValueError as exc:
            raise ProviderError(f"Failed to parse doctl JSON output: {exc}") from exc

    def _records(self, payload: Any) -> list[dict[str, Any]]:
        if not isinstance(payload, list):
            raise ProviderError("Unexpected doctl output: expected a JSON array")
        return payload

    def check(self) -> None:
        result = self._runner.run("account", "get", "-o", "json")
        if not result.ok:
            raise ToolError(
                f"doctl is not authenticated or failed to run: {result.stderr}",
                args=result.args,
                stderr=result.stderr,
            )

    def list_droplets(self) -> list[Droplet]:
        try:
            return [map_droplet(item) for item in self._records(self._json("compute", "droplet", "list"))]
        except (KeyError, ValidationError) as exc:
            raise ProviderError(f"Unexpected droplet record: {exc}") from exc

    def list_snapshots(self) -> list[Snapshot]:
        payload = self._json("compute", "snapshot", "list", "--resource", "droplet")
        try:
            return [Snapshot.model_validate(item) for item in self._records(payload)]
        except ValidationError as exc:
            raise ProviderError(f"Unexpected snapshot record: {exc}") from exc

    def list_regions(self) -> list[Region]:
        return [Region(slug=slug, name=name, available=available) for slug, name, available in REGIONS]

    def list_sizes(self) -> list[Size]:
        try:
            return [
                Size(
                    slug=item["slug"],
                    memory_mb=item["memory"],
                    vcpus=item["vcpus"],
                    disk_gb=item["disk"],
                    price_monthly=item["price_monthly"],
                )
                for item in self._records(self._json("compute", "size", "list"))
            ]
        except (KeyError, ValidationError) as exc:
            raise ProviderError(f"Unexpected size record: {exc}") from exc

    def list_images(self) -> list[Image]:
        payload = self._json("compute", "image", "list-distribution")
        try:
            return [Image.model_validate(item) for item in self._records(payload)]
        except ValidationError as exc:
            raise ProviderError(f"Unexpected image record: {exc}") from exc

    def list_ssh_keys(self) -> list[SshKey]:
        payload = self._json("compute", "ssh-key", "list")
        try:
            return [SshKey.model_validate(item) for item in self._records(payload)]
        except ValidationError as exc:
            raise ProviderError(f"Unexpected ssh key record: {exc}") from exc

    def create_droplet(self, args: CreateDropletArgs) -> Droplet:
        records = self._records(self._json(*build_create_command(args)))
        if not records:
            raise ProviderError("No droplet returned from create")
        try:
            droplet = map_droplet(records[0])
        except (KeyError, ValidationError) as exc:
            raise ProviderError(f"Unexpected droplet record: {exc}") from exc
        logger.info("Droplet created", extra={"droplet_id": droplet.id, "droplet": droplet.name})
        return droplet

    def snapshot_droplet(self, droplet_id: int, snapshot_name: str) -> None:
        self._json(
            "compute",
            "droplet-action",
            "snapshot",
            str(droplet_id),
            "--snapshot-name",
            snapshot_name,
            "--wait",
        )

    def delete_droplet(self, droplet_id: int) -> None:
        self._runner.check_output(
            "compute", "droplet", "delete", str(droplet_id), "--force", label="doctl delete"
        )
        logger.info("Droplet deleted", extra={"droplet_id": droplet_id})


__all__ = ["DoctlProvider", "ProviderError", "REGIONS", "build_create_command", "map_droplet"]
