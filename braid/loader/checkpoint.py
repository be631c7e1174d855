"""Merge layer checkpoints for PyTorch and safetensors files.

A checkpoint stores a merge layer as an ordered, tagged list of branches
followed by the layer's flags and its weight aggregate:

    {
        "format_version": 1,
        "branches": [
            {"type": "LinearBranch", "config": {...}, "state": {name: tensor}},
            {"type": "MultiplyMerge", "merge": {...nested checkpoint...}},
        ],
        "model": bool, "run": bool, "owns_layer": bool,
        "weights": tensor,
    }

`.pt` files hold that dict directly. `.safetensors` files hold the tensors
under flattened keys and the rest of the dict as JSON metadata.
"""
from __future__ import annotations

import json
import pickle
from pathlib import Path
from typing import cast

import torch
from pydantic import TypeAdapter, ValidationError
from safetensors import safe_open
from safetensors.torch import load_file, save_file
from torch import Tensor

from braid.config.layer import LayerConfig
from braid.config.topology import TopologyType
from braid.console import logger
from braid.errors import CheckpointError
from braid.layer import Branch
from braid.topology.multiply_merge import MultiplyMerge


FORMAT_VERSION = 1
_METADATA_KEY = "braid"
_TENSOR_REF = "__tensor__"
_LEAF_CONFIG: TypeAdapter[LayerConfig] = TypeAdapter(LayerConfig)


def _get_torch_version() -> tuple[int, int]:
    """Parse PyTorch version into (major, minor) tuple."""
    version_str = torch.__version__.split("+")[0]
    parts = version_str.split(".")
    return int(parts[0]), int(parts[1])


def _safe_torch_load(path: Path) -> object:
    """Load a checkpoint safely.

    Uses weights_only=True when available (PyTorch ≥2.4): a merge checkpoint
    only ever holds tensors, strings, numbers, bools, lists and dicts.
    """
    major, minor = _get_torch_version()

    try:
        if (major, minor) >= (2, 4):
            return torch.load(path, map_location="cpu", weights_only=True)
        return torch.load(path, map_location="cpu")
    except (RuntimeError, pickle.UnpicklingError, EOFError) as e:
        raise CheckpointError(f"Could not read checkpoint {path}: {e}") from e


def _flatten(node: object, prefix: str, tensors: dict[str, Tensor]) -> object:
    """Move every tensor in node into tensors, leaving a key reference behind."""
    if isinstance(node, Tensor):
        tensors[prefix] = node.detach().cpu().contiguous().clone()
        return {_TENSOR_REF: prefix}
    if isinstance(node, dict):
        return {
            k: _flatten(v, f"{prefix}.{k}" if prefix else str(k), tensors)
            for k, v in node.items()
        }
    if isinstance(node, list):
        return [_flatten(v, f"{prefix}.{i}", tensors) for i, v in enumerate(node)]
    return node


def _unflatten(node: object, tensors: dict[str, Tensor]) -> object:
    """Inverse of _flatten."""
    if isinstance(node, dict):
        if set(node) == {_TENSOR_REF}:
            key = node[_TENSOR_REF]
            if key not in tensors:
                raise CheckpointError(f"Checkpoint metadata references missing tensor {key!r}")
            return tensors[key]
        return {k: _unflatten(v, tensors) for k, v in node.items()}
    if isinstance(node, list):
        return [_unflatten(v, tensors) for v in node]
    return node


def _require(state: dict[str, object], key: str, kind: type) -> object:
    value = state.get(key)
    if not isinstance(value, kind):
        raise CheckpointError(
            f"Checkpoint field {key!r} must be {kind.__name__}, got {type(value).__name__}"
        )
    return value


class MergeCheckpoint:
    """Saves and restores merge layers, auto-detecting the file format.

    Supports:
    - PyTorch checkpoints (.pt, .bin, anything not .safetensors)
    - safetensors (.safetensors)
    """

    # ─────────────────────────────────────────────────────────────────────
    # In-memory state
    # ─────────────────────────────────────────────────────────────────────

    def state(self, merge: MultiplyMerge) -> dict[str, object]:
        """Describe a merge layer as a plain dict of tensors and primitives."""
        return {
            "format_version": FORMAT_VERSION,
            "branches": [self._entry(i, b) for i, b in enumerate(merge.branches)],
            "model": merge.model,
            "run": merge.run,
            "owns_layer": merge.owns_layer,
            "weights": merge.weights.detach().clone(),
        }

    def restore(self, merge: MultiplyMerge, state: object) -> MultiplyMerge:
        """Replace the contents of merge with the layer described by state.

        Every branch is rebuilt before anything is released, so a bad
        checkpoint leaves merge untouched. The branches merge held before
        are then released (closed only if it owned them).
        """
        if not isinstance(state, dict):
            raise CheckpointError(f"Checkpoint must be a dict, got {type(state).__name__}")
        state = cast(dict[str, object], state)
        version = state.get("format_version")
        if version != FORMAT_VERSION:
            raise CheckpointError(
                f"Unsupported checkpoint format_version {version!r}; "
                f"expected {FORMAT_VERSION}"
            )

        entries = cast(list[object], _require(state, "branches", list))
        model = cast(bool, _require(state, "model", bool))
        run = cast(bool, _require(state, "run", bool))
        owns_layer = cast(bool, _require(state, "owns_layer", bool))
        weights = cast(Tensor, _require(state, "weights", Tensor))

        branches = [self._branch(i, entry) for i, entry in enumerate(entries)]

        merge.reset(model=model, run=run, owns_layer=owns_layer)
        for branch in branches:
            merge.add(branch)
        merge.weights = weights.clone()
        return merge

    def from_state(self, state: object) -> MultiplyMerge:
        """Build a new merge layer from a state dict."""
        return self.restore(MultiplyMerge(), state)

    # ─────────────────────────────────────────────────────────────────────
    # Files
    # ─────────────────────────────────────────────────────────────────────

    def save(self, merge: MultiplyMerge, path: Path) -> Path:
        """Write merge to path; the suffix picks the format."""
        path = Path(path)
        state = self.state(merge)
        if path.suffix == ".safetensors":
            tensors: dict[str, Tensor] = {}
            header = _flatten(state, "", tensors)
            save_file(tensors, str(path), metadata={_METADATA_KEY: json.dumps(header)})
        else:
            torch.save(state, path)
        logger.success(f"Saved MultiplyMerge with {len(merge.branches)} branches")
        logger.path(str(path), "checkpoint")
        return path

    def read(self, path: Path) -> object:
        """Read the raw state dict from a checkpoint file."""
        path = Path(path)
        if not path.exists():
            raise CheckpointError(f"Checkpoint not found: {path}")
        if path.suffix == ".safetensors":
            return self.read_safetensors(path)
        return _safe_torch_load(path)

    def read_safetensors(self, path: Path) -> object:
        """Rebuild the state dict from safetensors tensors plus JSON metadata."""
        with safe_open(str(path), framework="pt", device="cpu") as f:
            metadata = f.metadata() or {}
        if _METADATA_KEY not in metadata:
            raise CheckpointError(f"{path} is not a braid checkpoint (no {_METADATA_KEY!r} metadata)")
        try:
            header = json.loads(metadata[_METADATA_KEY])
        except json.JSONDecodeError as e:
            raise CheckpointError(f"Corrupt checkpoint metadata in {path}: {e}") from e
        return _unflatten(header, load_file(str(path), device="cpu"))

    def load(self, path: Path) -> MultiplyMerge:
        """Load a new merge layer from a checkpoint file."""
        merge = self.from_state(self.read(path))
        logger.info(f"Loaded MultiplyMerge with {len(merge.branches)} branches from {path}")
        return merge

    def load_into(self, merge: MultiplyMerge, path: Path) -> MultiplyMerge:
        """Replace the contents of an existing merge layer from a file."""
        self.restore(merge, self.read(path))
        logger.info(f"Loaded MultiplyMerge with {len(merge.branches)} branches from {path}")
        return merge

    # ─────────────────────────────────────────────────────────────────────
    # Branch entries
    # ─────────────────────────────────────────────────────────────────────

    def _entry(self, index: int, branch: Branch) -> dict[str, object]:
        """Tagged description of one branch."""
        if isinstance(branch, MultiplyMerge):
            return {"type": TopologyType.MULTIPLY_MERGE.value, "merge": self.state(branch)}
        config = getattr(branch, "config", None)
        if config is None:
            raise CheckpointError(
                f"branch {index} ({type(branch).__name__}) has no config and cannot be saved"
            )
        return {
            "type": config.type.value,
            "config": config.model_dump(mode="json"),
            "state": {k: v.detach().clone() for k, v in branch.state_dict().items()},
        }

    def _branch(self, index: int, entry: object) -> Branch:
        """Rebuild one branch from its tagged description."""
        if not isinstance(entry, dict):
            raise CheckpointError(f"branch {index} entry must be a dict, got {type(entry).__name__}")
        tag = entry.get("type")
        if tag == TopologyType.MULTIPLY_MERGE.value:
            return self.from_state(entry.get("merge"))

        try:
            config = _LEAF_CONFIG.validate_python(entry.get("config"))
        except ValidationError as e:
            raise CheckpointError(f"branch {index} has an invalid config: {e}") from e
        if config.type.value != tag:
            raise CheckpointError(
                f"branch {index} is tagged {tag!r} but its config is {config.type.value!r}"
            )

        branch = config.build()
        try:
            branch.load_state_dict(cast(dict[str, Tensor], entry.get("state", {})), strict=True)
        except RuntimeError as e:
            raise CheckpointError(f"branch {index} ({tag}) state does not match: {e}") from e
        return branch
