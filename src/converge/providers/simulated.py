"""In-process simulated cloud implementing the VPC topology resource types."""

import copy
import ipaddress
import json
import os
import tempfile
import threading
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from .base import AttributeSchema, Provider, ResourceSchema
from ..utils.errors import ProviderError
from ..utils.logging import get_logger

logger = get_logger("providers.simulated")


def _attr(type: str = "string", **flags: bool) -> AttributeSchema:
    return AttributeSchema(type=type, **flags)


_TAGS = _attr("map(string)")
_ID = _attr(computed=True)
_ARN = _attr(computed=True)
_OWNER = _attr(computed=True, stable=True)

SCHEMAS: Dict[str, Dict[str, AttributeSchema]] = {
    "aws_vpc": {
        "cidr_block": _attr(required=True, force_new=True),
        "instance_tenancy": _attr(force_new=True, computed=True),
        "enable_dns_support": _attr("bool", computed=True),
        "enable_dns_hostnames": _attr("bool", computed=True),
        "tags": _TAGS,
        "id": _ID,
        "arn": _ARN,
        "owner_id": _OWNER,
        "default_route_table_id": _attr(computed=True),
    },
    "aws_subnet": {
        "vpc_id": _attr(required=True, force_new=True),
        "cidr_block": _attr(required=True, force_new=True),
        "availability_zone": _attr(force_new=True, computed=True),
        "map_public_ip_on_launch": _attr("bool", computed=True),
        "tags": _TAGS,
        "id": _ID,
        "arn": _ARN,
        "owner_id": _OWNER,
    },
    "aws_internet_gateway": {
        "vpc_id": _attr(required=True, force_new=True),
        "tags": _TAGS,
        "id": _ID,
        "arn": _ARN,
        "owner_id": _OWNER,
    },
    "aws_eip": {
        "domain": _attr(force_new=True, computed=True),
        "tags": _TAGS,
        "id": _ID,
        "allocation_id": _attr(computed=True),
        "public_ip": _attr(computed=True),
    },
    "aws_nat_gateway": {
        "allocation_id": _attr(required=True, force_new=True),
        "subnet_id": _attr(required=True, force_new=True),
        "connectivity_type": _attr(force_new=True, computed=True),
        "tags": _TAGS,
        "id": _ID,
        "network_interface_id": _attr(computed=True),
        "private_ip": _attr(computed=True),
        "public_ip": _attr(computed=True),
    },
    "aws_route_table": {
        "vpc_id": _attr(required=True, force_new=True),
        "tags": _TAGS,
        "id": _ID,
        "arn": _ARN,
        "owner_id": _OWNER,
    },
    "aws_route": {
        "route_table_id": _attr(required=True, force_new=True),
        "destination_cidr_block": _attr(required=True, force_new=True),
        "gateway_id": _attr(),
        "nat_gateway_id": _attr(),
        "id": _ID,
    },
    "aws_route_table_association": {
        "subnet_id": _attr(required=True, force_new=True),
        "route_table_id": _attr(required=True, force_new=True),
        "id": _ID,
    },
}

DEFAULTS: Dict[str, Dict[str, Any]] = {
    "aws_vpc": {"instance_tenancy": "default", "enable_dns_support": True, "enable_dns_hostnames": False},
    "aws_subnet": {"map_public_ip_on_launch": False},
    "aws_eip": {"domain": "vpc"},
    "aws_nat_gateway": {"connectivity_type": "public"},
}

ID_PREFIXES = {
    "aws_vpc": "vpc",
    "aws_subnet": "subnet",
    "aws_internet_gateway": "igw",
    "aws_eip": "eipalloc",
    "aws_nat_gateway": "nat",
    "aws_route_table": "rtb",
    "aws_route": "r",
    "aws_route_table_association": "rtbassoc",
}

ARN_KINDS = {
    "aws_vpc": "vpc",
    "aws_subnet": "subnet",
    "aws_internet_gateway": "internet-gateway",
    "aws_route_table": "route-table",
}

# (dependent type, attribute) pairs that block deleting the referenced resource.
CONTAINMENT = {
    "aws_vpc": [("aws_subnet", "vpc_id"), ("aws_internet_gateway", "vpc_id"), ("aws_route_table", "vpc_id")],
    "aws_subnet": [("aws_nat_gateway", "subnet_id"), ("aws_route_table_association", "subnet_id")],
    "aws_eip": [("aws_nat_gateway", "allocation_id")],
    "aws_route_table": [("aws_route", "route_table_id"), ("aws_route_table_association", "route_table_id")],
}


class SimulatedProvider(Provider):
    """
    A small in-memory EC2 networking API.

    Identities and computed attributes are generated the way the real API
    shapes them, parent references are checked, and the whole cloud can be
    persisted to a JSON file so separate CLI invocations see the same world.
    """

    name = "aws"

    def __init__(
        self,
        state_file: Optional[str] = None,
        region: str = "us-east-1",
        account_id: str = "123456789012",
    ):
        self.state_file = Path(state_file) if state_file else None
        self.region = region
        self.account_id = account_id
        self._lock = threading.RLock()
        self._resources: Dict[str, Dict[str, Any]] = {}
        self._ip_counter = 0
        self._load()

    def get_schema(self, resource_type: str) -> ResourceSchema:
        if resource_type not in SCHEMAS:
            raise ProviderError(f"Unsupported resource type '{resource_type}'")
        return ResourceSchema(resource_type=resource_type, attributes=SCHEMAS[resource_type])

    def create(self, resource_type: str, attributes: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        self.get_schema(resource_type)
        with self._lock:
            desired = {k: v for k, v in attributes.items() if v is not None}
            self._check_references(resource_type, desired, identity=None)

            identity = f"{ID_PREFIXES[resource_type]}-{uuid.uuid4().hex[:17]}"
            full = dict(DEFAULTS.get(resource_type, {}))
            full.update(desired)
            full.update(self._computed(resource_type, identity, full))

            self._resources[identity] = {"type": resource_type, "attributes": full}
            self._save()
            logger.debug(f"Created {resource_type} {identity}")
            return identity, copy.deepcopy(full)

    def read(self, resource_type: str, identity: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._resources.get(identity)
            if entry is None or entry["type"] != resource_type:
                return None
            return copy.deepcopy(entry["attributes"])

    def update(self, resource_type: str, identity: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        schema = self.get_schema(resource_type)
        with self._lock:
            entry = self._get(resource_type, identity)
            current = entry["attributes"]
            desired = {k: v for k, v in attributes.items() if v is not None}

            for name in schema.attributes:
                if schema.is_force_new(name) and name in desired and desired[name] != current.get(name):
                    raise ProviderError(f"{resource_type} {identity}: '{name}' cannot be changed in place")
            self._check_references(resource_type, desired, identity=identity)

            updated = {
                name: value for name, value in current.items()
                if schema.is_computed(name) and name not in desired
            }
            updated.update(desired)
            entry["attributes"] = updated
            self._save()
            logger.debug(f"Updated {resource_type} {identity}")
            return copy.deepcopy(updated)

    def delete(self, resource_type: str, identity: str) -> None:
        with self._lock:
            entry = self._resources.get(identity)
            if entry is None:
                logger.debug(f"{resource_type} {identity} already gone")
                return

            for dependent_type, attribute in CONTAINMENT.get(resource_type, []):
                blockers = self._find(dependent_type, attribute, self._reference_value(resource_type, identity, attribute))
                if blockers:
                    raise ProviderError(
                        f"DependencyViolation: {identity} has dependent {dependent_type} {', '.join(blockers)}"
                    )
            del self._resources[identity]
            self._save()
            logger.debug(f"Deleted {resource_type} {identity}")

    def close(self) -> None:
        with self._lock:
            self._save()

    def resources(self, resource_type: Optional[str] = None) -> Dict[str, Dict[str, Any]]:
        """Snapshot of the simulated cloud (identity -> attributes)."""
        with self._lock:
            return {
                identity: copy.deepcopy(entry["attributes"])
                for identity, entry in self._resources.items()
                if resource_type is None or entry["type"] == resource_type
            }

    def _get(self, resource_type: str, identity: str) -> Dict[str, Any]:
        entry = self._resources.get(identity)
        if entry is None or entry["type"] != resource_type:
            raise ProviderError(f"{resource_type} {identity} not found")
        return entry

    def _find(self, resource_type: str, attribute: str, value: Any) -> List[str]:
        return sorted(
            identity for identity, entry in self._resources.items()
            if entry["type"] == resource_type and entry["attributes"].get(attribute) == value
        )

    def _reference_value(self, resource_type: str, identity: str, attribute: str) -> Any:
        if resource_type == "aws_eip":
            return self._resources[identity]["attributes"]["allocation_id"]
        return identity

    def _computed(self, resource_type: str, identity: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        computed: Dict[str, Any] = {"id": identity}
        if resource_type in ARN_KINDS:
            computed["arn"] = f"arn:aws:ec2:{self.region}:{self.account_id}:{ARN_KINDS[resource_type]}/{identity}"
            computed["owner_id"] = self.account_id
        if resource_type == "aws_vpc":
            computed["default_route_table_id"] = f"rtb-{uuid.uuid4().hex[:17]}"
        elif resource_type == "aws_subnet":
            computed["availability_zone"] = attributes.get("availability_zone") or f"{self.region}a"
        elif resource_type == "aws_eip":
            computed["allocation_id"] = identity
            computed["public_ip"] = self._next_public_ip()
        elif resource_type == "aws_nat_gateway":
            subnet = self._resources[attributes["subnet_id"]]["attributes"]
            network = ipaddress.ip_network(subnet["cidr_block"])
            taken = len(self._find("aws_nat_gateway", "subnet_id", attributes["subnet_id"]))
            eip = self._find("aws_eip", "allocation_id", attributes["allocation_id"])
            computed["private_ip"] = str(network.network_address + 4 + taken)
            computed["public_ip"] = self._resources[eip[0]]["attributes"]["public_ip"]
            computed["network_interface_id"] = f"eni-{uuid.uuid4().hex[:17]}"
        return computed

    def _next_public_ip(self) -> str:
        self._ip_counter += 1
        return str(ipaddress.ip_address("203.0.113.0") + self._ip_counter % 254 + 1)

    def _require(self, resource_type: str, identity: Any, field: str) -> Dict[str, Any]:
        entry = self._resources.get(identity) if isinstance(identity, str) else None
        if entry is None or entry["type"] != resource_type:
            raise ProviderError(f"{field}: {resource_type} {identity!r} does not exist")
        return entry["attributes"]

    def _check_references(self, resource_type: str, attributes: Dict[str, Any], identity: Optional[str]) -> None:
        """Parent references must exist and networks must fit inside their parents."""
        if resource_type == "aws_vpc":
            network = self._network(attributes["cidr_block"], "cidr_block")
            if not 16 <= network.prefixlen <= 28:
                raise ProviderError(f"InvalidVpc.Range: {network} must be between /16 and /28")

        elif resource_type == "aws_subnet":
            vpc = self._require("aws_vpc", attributes["vpc_id"], "vpc_id")
            network = self._network(attributes["cidr_block"], "cidr_block")
            if not network.subnet_of(self._network(vpc["cidr_block"], "vpc cidr_block")):
                raise ProviderError(f"InvalidSubnet.Range: {network} is not inside VPC {vpc['cidr_block']}")
            for other in self._find("aws_subnet", "vpc_id", attributes["vpc_id"]):
                if other != identity and network.overlaps(self._network(self._resources[other]["attributes"]["cidr_block"], "cidr_block")):
                    raise ProviderError(f"InvalidSubnet.Conflict: {network} overlaps subnet {other}")

        elif resource_type == "aws_internet_gateway":
            self._require("aws_vpc", attributes["vpc_id"], "vpc_id")
            attached = [g for g in self._find("aws_internet_gateway", "vpc_id", attributes["vpc_id"]) if g != identity]
            if attached:
                raise ProviderError(f"Resource.AlreadyAssociated: VPC {attributes['vpc_id']} already has {attached[0]}")

        elif resource_type == "aws_nat_gateway":
            self._require("aws_subnet", attributes["subnet_id"], "subnet_id")
            if not self._find("aws_eip", "allocation_id", attributes["allocation_id"]):
                raise ProviderError(f"allocation_id: aws_eip {attributes['allocation_id']!r} does not exist")
            users = [n for n in self._find("aws_nat_gateway", "allocation_id", attributes["allocation_id"]) if n != identity]
            if users:
                raise ProviderError(f"Resource.AlreadyAssociated: {attributes['allocation_id']} is used by {users[0]}")

        elif resource_type == "aws_route_table":
            self._require("aws_vpc", attributes["vpc_id"], "vpc_id")

        elif resource_type == "aws_route":
            self._require("aws_route_table", attributes["route_table_id"], "route_table_id")
            self._network(attributes["destination_cidr_block"], "destination_cidr_block")
            targets = [name for name in ("gateway_id", "nat_gateway_id") if attributes.get(name)]
            if len(targets) != 1:
                raise ProviderError("InvalidRoute: exactly one of gateway_id or nat_gateway_id is required")
            if attributes.get("gateway_id"):
                self._require("aws_internet_gateway", attributes["gateway_id"], "gateway_id")
            else:
                self._require("aws_nat_gateway", attributes["nat_gateway_id"], "nat_gateway_id")
            for other in self._find("aws_route", "route_table_id", attributes["route_table_id"]):
                if other != identity and self._resources[other]["attributes"]["destination_cidr_block"] == attributes["destination_cidr_block"]:
                    raise ProviderError(f"RouteAlreadyExists: {attributes['destination_cidr_block']} in {attributes['route_table_id']}")

        elif resource_type == "aws_route_table_association":
            self._require("aws_subnet", attributes["subnet_id"], "subnet_id")
            self._require("aws_route_table", attributes["route_table_id"], "route_table_id")
            associated = [a for a in self._find("aws_route_table_association", "subnet_id", attributes["subnet_id"]) if a != identity]
            if associated:
                raise ProviderError(f"Resource.AlreadyAssociated: subnet {attributes['subnet_id']} is associated by {associated[0]}")

    @staticmethod
    def _network(value: Any, field: str) -> ipaddress.IPv4Network:
        try:
            return ipaddress.ip_network(value, strict=True)
        except (TypeError, ValueError) as e:
            raise ProviderError(f"{field}: invalid CIDR block {value!r}: {e}")

    def _load(self) -> None:
        if self.state_file is None or not self.state_file.exists():
            return
        try:
            with open(self.state_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ProviderError(f"Cannot read simulated cloud from {self.state_file}: {e}")
        self._resources = data.get("resources", {})
        self._ip_counter = data.get("ip_counter", 0)
        logger.debug(f"Loaded {len(self._resources)} simulated resources from {self.state_file}")

    def _save(self) -> None:
        if self.state_file is None:
            return
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        payload = {"resources": self._resources, "ip_counter": self._ip_counter}
        fd, tmp_path = tempfile.mkstemp(prefix=f".{self.state_file.name}.", dir=str(self.state_file.parent))
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, sort_keys=True)
        os.replace(tmp_path, self.state_file)
