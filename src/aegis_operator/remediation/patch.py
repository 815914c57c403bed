"""Validate and apply LLM-suggested strategic merge patches to Deployment manifests."""

from __future__ import annotations

import copy
from typing import Any

import yaml

from aegis_operator.errors import NoOpPatchError, PatchRejectedError, RemediationError

# Patch merge keys for list-of-map fields in a Deployment (from the Kubernetes
# API schema). Lists not named here are replaced wholesale, as the API server does.
MERGE_KEYS = {
    "containers": "name",
    "initContainers": "name",
    "ephemeralContainers": "name",
    "env": "name",
    "ports": "containerPort",
    "volumeMounts": "mountPath",
    "volumeDevices": "devicePath",
    "volumes": "name",
    "imagePullSecrets": "name",
    "hostAliases": "ip",
    "topologySpreadConstraints": "topologyKey",
}

ALLOWED_CONTAINER_FIELDS = frozenset({"name", "resources", "env", "args", "livenessProbe", "readinessProbe"})
ALLOWED_RESOURCE_FIELDS = frozenset({"limits", "requests"})
IDENTITY_FIELDS = ("apiVersion", "kind")
IDENTITY_METADATA_FIELDS = ("name", "namespace")


def _merge_list(current: list[Any], patch: list[Any], merge_key: str) -> list[Any]:
    merged = [copy.deepcopy(item) for item in current]
    for item in patch:
        if not isinstance(item, dict) or merge_key not in item:
            merged.append(copy.deepcopy(item))
            continue
        for i, existing in enumerate(merged):
            if isinstance(existing, dict) and existing.get(merge_key) == item[merge_key]:
                merged[i] = strategic_merge(existing, item)
                break
        else:
            merged.append(strategic_merge({}, item))
    return merged


def strategic_merge(current: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
    """Merge patch into current following strategic-merge-patch rules.

    Maps merge recursively, a null value deletes the key, lists named in
    MERGE_KEYS merge element-wise by their key, and every other list is
    replaced.
    """
    result = copy.deepcopy(current)
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        elif isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = strategic_merge(result[key], value)
        elif isinstance(value, dict):
            result[key] = strategic_merge({}, value)
        elif isinstance(value, list) and key in MERGE_KEYS and isinstance(result.get(key), list):
            result[key] = _merge_list(result[key], value, MERGE_KEYS[key])
        else:
            result[key] = copy.deepcopy(value)
    return result


def parse_patch(patch_yaml: str) -> dict[str, Any]:
    try:
        patch = yaml.safe_load(patch_yaml)
    except yaml.YAMLError as e:
        raise PatchRejectedError(f"patch is not valid YAML: {e}") from e
    if not isinstance(patch, dict):
        raise PatchRejectedError("patch must be a YAML mapping")
    return patch


def _reject(path: str) -> None:
    raise PatchRejectedError(f"patch touches {path}, which is outside the allowed fields")


def _check_keys(mapping: Any, allowed: frozenset[str] | set[str], path: str) -> dict[str, Any]:
    if not isinstance(mapping, dict):
        raise PatchRejectedError(f"{path} must be a mapping")
    for key in mapping:
        if str(key).startswith("$") or key not in allowed:
            _reject(f"{path}.{key}" if path else str(key))
    return mapping


def validate_patch_fields(patch: dict[str, Any], manifest: dict[str, Any] | None = None) -> None:
    """Reject any patch path outside the remediation allow-list.

    Allowed: spec.replicas and, per named container, resources.limits/requests,
    env, args, livenessProbe, readinessProbe. apiVersion, kind,
    metadata.name, and metadata.namespace may be present only when they
    match the manifest being patched.
    """
    manifest = manifest or {}
    _check_keys(patch, {"apiVersion", "kind", "metadata", "spec"}, "")

    for field in IDENTITY_FIELDS:
        if field in patch and manifest.get(field) not in (None, patch[field]):
            raise PatchRejectedError(f"patch changes {field} from {manifest.get(field)!r} to {patch[field]!r}")
    if "metadata" in patch:
        meta = _check_keys(patch["metadata"], set(IDENTITY_METADATA_FIELDS), "metadata")
        current_meta = manifest.get("metadata") or {}
        for field in IDENTITY_METADATA_FIELDS:
            if field in meta and current_meta.get(field) not in (None, meta[field]):
                raise PatchRejectedError(f"patch changes metadata.{field}")

    spec = _check_keys(patch.get("spec", {}), {"replicas", "template"}, "spec")
    replicas = spec.get("replicas", 0)
    if isinstance(replicas, bool) or not isinstance(replicas, int) or replicas < 0:
        raise PatchRejectedError("spec.replicas must be a non-negative integer")
    if "template" not in spec:
        return
    template = _check_keys(spec["template"], {"spec"}, "spec.template")
    pod_spec = _check_keys(template.get("spec", {}), {"containers"}, "spec.template.spec")
    containers = pod_spec.get("containers", [])
    if not isinstance(containers, list):
        raise PatchRejectedError("spec.template.spec.containers must be a list")
    for i, container in enumerate(containers):
        path = f"spec.template.spec.containers[{i}]"
        _check_keys(container, ALLOWED_CONTAINER_FIELDS, path)
        if not container.get("name"):
            raise PatchRejectedError(f"{path} has no name to merge on")
        if "resources" in container:
            _check_keys(container["resources"], ALLOWED_RESOURCE_FIELDS, f"{path}.resources")


def _is_target(doc: Any, deployment_name: str | None) -> bool:
    if not isinstance(doc, dict) or doc.get("kind", "Deployment") != "Deployment":
        return False
    name = (doc.get("metadata") or {}).get("name")
    return deployment_name is None or name in (None, deployment_name)


def apply_yaml_patch(current_yaml: str, patch_yaml: str, deployment_name: str | None = None) -> str:
    """Apply a strategic merge patch (YAML) to a Deployment manifest.

    An empty patch returns the content unchanged. Multi-document files keep
    every document; only the Deployment named deployment_name is patched.
    The patch is validated against the allow-list before it is merged.
    """
    if not patch_yaml.strip():
        return current_yaml

    patch = parse_patch(patch_yaml)
    try:
        docs = list(yaml.safe_load_all(current_yaml))
    except yaml.YAMLError as e:
        raise RemediationError(f"manifest is not valid YAML: {e}") from e

    for i, doc in enumerate(docs):
        if _is_target(doc, deployment_name):
            validate_patch_fields(patch, doc)
            merged = strategic_merge(doc, patch)
            if merged == doc:
                return current_yaml
            docs[i] = merged
            break
    else:
        target = f"Deployment {deployment_name}" if deployment_name else "Deployment"
        raise RemediationError(f"no {target} document found in manifest")

    non_empty = [d for d in docs if d is not None]
    if len(non_empty) == 1:
        return yaml.safe_dump(non_empty[0], sort_keys=False)
    return yaml.safe_dump_all(non_empty, sort_keys=False)


def ensure_changed(original: str, patched: str, path: str) -> None:
    if patched == original:
        raise NoOpPatchError(f"patch produced no change to {path}, skipping PR")
