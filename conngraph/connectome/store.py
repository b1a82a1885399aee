#!/usr/bin/env python3
"""
Record Store

Typed keys, per-unit records and the on-disk index shared by every stage of
the connectivity graph pipeline.

Each unit of work (one atlas / condition / subject, optionally one threshold
combination) is addressed by a frozen dataclass key. Keys map to files through
a RecordIndex instead of being recovered by splitting filenames, so condition
and subject names may contain underscores.

Layout under a stage root:
    {root}/{atlas}/{condition}/
        ├── TS_{atlas}_{condition}_{subject}.npz          # time series (.mat also read)
        ├── conn_mat_{conn}_{atlas}_{condition}_{subject}.npz
        ├── {thresh}_{wei|bin}_{weight:.2f}/
        │   └── graphs_{subject}_{conn}_{atlas}_{thresh}_{wei|bin}_{weight:.2f}.npz
        └── graph_stats_{conn}_{thresh}_{wei|bin}_{weight:.2f}/
            └── graph_stats_{subject}_{conn}_{atlas}_{thresh}_{wei|bin}_{weight:.2f}.npz
    {root}/index.json                                     # manifest written by each stage
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np
from scipy.io import loadmat

logger = logging.getLogger(__name__)

MERGED_ATLAS = 'merged_atlases'
INDEX_FILENAME = 'index.json'
RECORD_KINDS = ('timeseries', 'connectivity', 'graphs', 'graph_stats')

_CONN_TYPES = ('corr', 'fisher', 'partcorr')
_THRESH_TYPES = ('absolute', 'proportional')
_GRAPH_TYPES = ('wei', 'bin')


class MissingDataError(FileNotFoundError):
    """Raised when a required record is absent."""
    pass


class DimensionMismatch(ValueError):
    """Raised when array shapes and ROI metadata disagree."""
    pass


# =============================================================================
# Keys
# =============================================================================

@dataclass(frozen=True, order=True)
class SeriesKey:
    """Identity of one ROI time series."""
    atlas: str
    condition: str
    subject: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True, order=True)
class ConnKey:
    """Identity of one connectivity matrix."""
    atlas: str
    condition: str
    subject: str
    conn_type: str

    @property
    def series_key(self) -> SeriesKey:
        return SeriesKey(self.atlas, self.condition, self.subject)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True, order=True)
class GraphKey:
    """Identity of one adjacency matrix (and of its statistics record)."""
    atlas: str
    condition: str
    subject: str
    conn_type: str
    thresh_type: str
    graph_type: str
    weight: float

    def __post_init__(self):
        # weights are addressed at two decimals everywhere on disk
        object.__setattr__(self, 'weight', round(float(self.weight), 2))

    @property
    def conn_key(self) -> ConnKey:
        return ConnKey(self.atlas, self.condition, self.subject, self.conn_type)

    @property
    def combination(self) -> str:
        """Threshold folder label, e.g. 'proportional_wei_0.10'."""
        return f"{self.thresh_type}_{self.graph_type}_{self.weight:.2f}"

    def to_dict(self) -> dict:
        return asdict(self)


_KEY_CLASSES = {
    'timeseries': SeriesKey,
    'connectivity': ConnKey,
    'graphs': GraphKey,
    'graph_stats': GraphKey,
}


# =============================================================================
# Naming
# =============================================================================

def timeseries_filename(key: SeriesKey, suffix: str = '.npz') -> str:
    return f"TS_{key.atlas}_{key.condition}_{key.subject}{suffix}"


def connectivity_filename(key: ConnKey) -> str:
    return f"conn_mat_{key.conn_type}_{key.atlas}_{key.condition}_{key.subject}.npz"


def graph_filename(key: GraphKey) -> str:
    return f"graphs_{key.subject}_{key.conn_type}_{key.atlas}_{key.combination}.npz"


def stats_filename(key: GraphKey) -> str:
    return f"graph_stats_{key.subject}_{key.conn_type}_{key.atlas}_{key.combination}.npz"


def graph_folder(key: GraphKey) -> str:
    return key.combination


def stats_folder(key: GraphKey) -> str:
    return f"graph_stats_{key.conn_type}_{key.combination}"


def record_path(kind: str, root: Path, key) -> Path:
    """
    Canonical location of a record under a stage root.

    Args:
        kind: One of 'timeseries', 'connectivity', 'graphs', 'graph_stats'
        root: Stage root directory
        key: Key matching the record kind

    Returns:
        Path of the .npz file for the record
    """
    base = Path(root) / key.atlas / key.condition
    if kind == 'timeseries':
        return base / timeseries_filename(key)
    if kind == 'connectivity':
        return base / connectivity_filename(key)
    if kind == 'graphs':
        return base / graph_folder(key) / graph_filename(key)
    if kind == 'graph_stats':
        return base / stats_folder(key) / stats_filename(key)
    raise ValueError(f"Unknown record kind: {kind}")


def _parse_weight(text: str) -> Optional[float]:
    try:
        return float(text)
    except ValueError:
        return None


def _parse_combination(label: str) -> Optional[Tuple[str, str, float]]:
    """Split '<thresh>_<wei|bin>_<weight>' into its parts."""
    parts = label.rsplit('_', 2)
    if len(parts) != 3:
        return None
    thresh_type, graph_type, weight_text = parts
    weight = _parse_weight(weight_text)
    if thresh_type not in _THRESH_TYPES or graph_type not in _GRAPH_TYPES or weight is None:
        return None
    return thresh_type, graph_type, weight


def _strip(text: str, prefix: str, suffix: str = '') -> Optional[str]:
    if not text.startswith(prefix) or not text.endswith(suffix):
        return None
    middle = text[len(prefix):len(text) - len(suffix)]
    return middle or None


def parse_record_path(kind: str, root: Path, path: Path):
    """
    Recover the key of a record file from its location.

    Atlas and condition come from the directory names; the known filename
    prefix and suffix are then stripped to recover the subject. Returns None
    when the file does not follow the naming convention.
    """
    rel = Path(path).relative_to(root)
    parts = rel.parts
    stem = rel.stem

    if kind in ('timeseries', 'connectivity'):
        if len(parts) != 3:
            return None
        atlas, condition = parts[0], parts[1]
        if kind == 'timeseries':
            subject = _strip(stem, f"TS_{atlas}_{condition}_")
            return SeriesKey(atlas, condition, subject) if subject else None
        for conn_type in _CONN_TYPES:
            subject = _strip(stem, f"conn_mat_{conn_type}_{atlas}_{condition}_")
            if subject:
                return ConnKey(atlas, condition, subject, conn_type)
        return None

    if len(parts) != 4:
        return None
    atlas, condition, folder = parts[0], parts[1], parts[2]

    if kind == 'graphs':
        combo = _parse_combination(folder)
        if combo is None:
            return None
        for conn_type in _CONN_TYPES:
            subject = _strip(stem, 'graphs_', f"_{conn_type}_{atlas}_{folder}")
            if subject:
                return GraphKey(atlas, condition, subject, conn_type, *combo)
        return None

    if kind == 'graph_stats':
        for conn_type in _CONN_TYPES:
            label = _strip(folder, f"graph_stats_{conn_type}_")
            combo = _parse_combination(label) if label else None
            if combo is None:
                continue
            subject = _strip(stem, 'graph_stats_', f"_{conn_type}_{atlas}_{label}")
            if subject:
                return GraphKey(atlas, condition, subject, conn_type, *combo)
        return None

    raise ValueError(f"Unknown record kind: {kind}")


# =============================================================================
# Records
# =============================================================================

def _as_roi_names(roi_names: Sequence[str]) -> List[str]:
    return [str(name) for name in roi_names]


def _as_xyz(xyz, n_rois: int) -> np.ndarray:
    if xyz is None:
        return np.full((n_rois, 3), np.nan)
    xyz = np.asarray(xyz, dtype=float)
    if xyz.ndim == 1 and xyz.size == 0:
        return np.full((n_rois, 3), np.nan)
    # MATLAB exports store centroids as 3 x N
    if xyz.ndim == 2 and xyz.shape[0] == 3 and xyz.shape[1] != 3:
        xyz = xyz.T
    return xyz


def _check_rois(n_rois: int, roi_names: List[str], xyz: np.ndarray, what: str):
    if len(roi_names) != n_rois:
        raise DimensionMismatch(
            f"{what}: {n_rois} ROIs in data but {len(roi_names)} roi_names"
        )
    if xyz.shape != (n_rois, 3):
        raise DimensionMismatch(
            f"{what}: expected xyz of shape ({n_rois}, 3), got {xyz.shape}"
        )


def _check_square(matrix: np.ndarray, what: str):
    if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
        raise DimensionMismatch(f"{what}: expected square matrix, got shape {matrix.shape}")


def _notes_to_json(notes: Dict[str, Any]) -> str:
    return json.dumps(notes, default=str)


def _load_npz(path: Path) -> Dict[str, np.ndarray]:
    path = Path(path)
    if not path.exists():
        raise MissingDataError(f"Record not found: {path}")
    with np.load(path, allow_pickle=False) as data:
        return {name: data[name] for name in data.files}


def _save_npz(path: Path, arrays: Dict[str, np.ndarray]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    np.savez(path, **arrays)
    return path


@dataclass
class TimeSeriesRecord:
    """ROI time series (T x N) with ROI names and centroids."""
    timeseries: np.ndarray
    roi_names: List[str]
    xyz: Optional[np.ndarray] = None
    notes: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.timeseries = np.asarray(self.timeseries, dtype=float)
        if self.timeseries.ndim != 2:
            raise DimensionMismatch(
                f"Expected 2D timeseries, got shape {self.timeseries.shape}"
            )
        self.roi_names = _as_roi_names(self.roi_names)
        self.xyz = _as_xyz(self.xyz, self.timeseries.shape[1])
        _check_rois(self.timeseries.shape[1], self.roi_names, self.xyz, 'timeseries')

    @property
    def n_timepoints(self) -> int:
        return self.timeseries.shape[0]

    @property
    def n_rois(self) -> int:
        return self.timeseries.shape[1]

    def save(self, path: Path) -> Path:
        return _save_npz(path, {
            'timeseries': self.timeseries,
            'roi_names': np.array(self.roi_names, dtype=str),
            'xyz': self.xyz,
            'notes': np.array(_notes_to_json(self.notes)),
        })

    @classmethod
    def load(cls, path: Path) -> 'TimeSeriesRecord':
        path = Path(path)
        if path.suffix == '.mat':
            return load_mat_timeseries(path)
        data = _load_npz(path)
        return cls(
            timeseries=data['timeseries'],
            roi_names=list(data['roi_names']),
            xyz=data['xyz'],
            notes=json.loads(str(data['notes'])),
        )


def _mat_strings(value) -> List[str]:
    """Flatten a MATLAB cell array / char matrix of names into strings."""
    if isinstance(value, str):
        return [value]
    arr = np.asarray(value)
    if arr.dtype.kind in ('U', 'S') and arr.ndim == 2:
        return [''.join(row).strip() for row in arr.astype(str)]
    names = []
    for item in np.atleast_1d(arr).ravel():
        if isinstance(item, np.ndarray):
            item = item.squeeze()
            names.append(str(item.item() if item.ndim == 0 else ''.join(item.astype(str))))
        else:
            names.append(str(item))
    return names


def load_mat_timeseries(path: Path) -> TimeSeriesRecord:
    """
    Read a time series exported by the ROI extraction tools as a .mat file.

    Expected variables: weighted_ts (T x N), roi_names (N names), xyz
    (N x 3 or 3 x N).
    """
    path = Path(path)
    if not path.exists():
        raise MissingDataError(f"Time series not found: {path}")

    mat = loadmat(path, squeeze_me=True)
    if 'weighted_ts' not in mat:
        raise KeyError(f"{path.name} has no 'weighted_ts' variable")

    timeseries = np.asarray(mat['weighted_ts'], dtype=float)
    if timeseries.ndim == 1:
        timeseries = timeseries[:, np.newaxis]
    roi_names = _mat_strings(mat['roi_names']) if 'roi_names' in mat else [
        f"ROI_{i:03d}" for i in range(timeseries.shape[1])
    ]
    xyz = mat.get('xyz')
    if xyz is not None:
        xyz = np.asarray(xyz, dtype=float)
        if xyz.ndim == 1 and xyz.size == 3:
            xyz = xyz[np.newaxis, :]

    return TimeSeriesRecord(
        timeseries=timeseries,
        roi_names=roi_names,
        xyz=xyz,
        notes={'source': str(path), 'ts_type': 'HRF weighted TS'},
    )


@dataclass
class ConnectivityRecord:
    """Connectivity matrix with its p-values, ROI metadata and provenance."""
    conn_mat: np.ndarray
    p_vals: np.ndarray
    roi_names: List[str]
    xyz: Optional[np.ndarray] = None
    notes: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.conn_mat = np.asarray(self.conn_mat, dtype=float)
        self.p_vals = np.asarray(self.p_vals, dtype=float)
        _check_square(self.conn_mat, 'conn_mat')
        if self.p_vals.shape != self.conn_mat.shape:
            raise DimensionMismatch(
                f"p_vals shape {self.p_vals.shape} != conn_mat shape {self.conn_mat.shape}"
            )
        self.roi_names = _as_roi_names(self.roi_names)
        self.xyz = _as_xyz(self.xyz, self.conn_mat.shape[0])
        _check_rois(self.conn_mat.shape[0], self.roi_names, self.xyz, 'conn_mat')

    def save(self, path: Path) -> Path:
        return _save_npz(path, {
            'conn_mat': self.conn_mat,
            'p_vals': self.p_vals,
            'roi_names': np.array(self.roi_names, dtype=str),
            'xyz': self.xyz,
            'notes': np.array(_notes_to_json(self.notes)),
        })

    @classmethod
    def load(cls, path: Path) -> 'ConnectivityRecord':
        data = _load_npz(path)
        return cls(
            conn_mat=data['conn_mat'],
            p_vals=data['p_vals'],
            roi_names=list(data['roi_names']),
            xyz=data['xyz'],
            notes=json.loads(str(data['notes'])),
        )


@dataclass
class GraphRecord:
    """Thresholded adjacency matrix with ROI metadata and provenance."""
    adj: np.ndarray
    roi_names: List[str]
    xyz: Optional[np.ndarray] = None
    notes: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.adj = np.asarray(self.adj, dtype=float)
        _check_square(self.adj, 'adj')
        self.roi_names = _as_roi_names(self.roi_names)
        self.xyz = _as_xyz(self.xyz, self.adj.shape[0])
        _check_rois(self.adj.shape[0], self.roi_names, self.xyz, 'adj')

    def save(self, path: Path) -> Path:
        return _save_npz(path, {
            'adj': self.adj,
            'roi_names': np.array(self.roi_names, dtype=str),
            'xyz': self.xyz,
            'notes': np.array(_notes_to_json(self.notes)),
        })

    @classmethod
    def load(cls, path: Path) -> 'GraphRecord':
        data = _load_npz(path)
        return cls(
            adj=data['adj'],
            roi_names=list(data['roi_names']),
            xyz=data['xyz'],
            notes=json.loads(str(data['notes'])),
        )


@dataclass
class GraphStatsRecord:
    """
    Nodal and global graph statistics for one adjacency matrix.

    nodal maps metric name to a length-N vector parallel to roi_names;
    global_metrics maps metric name to a scalar. Never mutated once built.
    """
    nodal: Dict[str, np.ndarray]
    global_metrics: Dict[str, float]
    communities: np.ndarray
    roi_names: List[str]
    xyz: Optional[np.ndarray] = None
    notes: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.roi_names = _as_roi_names(self.roi_names)
        n_rois = len(self.roi_names)
        self.nodal = {name: np.asarray(vec, dtype=float) for name, vec in self.nodal.items()}
        for name, vec in self.nodal.items():
            if vec.shape != (n_rois,):
                raise DimensionMismatch(
                    f"nodal metric '{name}' has shape {vec.shape}, expected ({n_rois},)"
                )
        self.communities = np.asarray(self.communities, dtype=int)
        if self.communities.shape != (n_rois,):
            raise DimensionMismatch(
                f"communities has shape {self.communities.shape}, expected ({n_rois},)"
            )
        self.global_metrics = {name: float(value) for name, value in self.global_metrics.items()}
        self.xyz = _as_xyz(self.xyz, n_rois)
        _check_rois(n_rois, self.roi_names, self.xyz, 'graph_stats')

    def save(self, path: Path) -> Path:
        arrays = {f"nodal__{name}": vec for name, vec in self.nodal.items()}
        arrays.update({
            'communities': self.communities,
            'global_metrics': np.array(json.dumps(self.global_metrics)),
            'roi_names': np.array(self.roi_names, dtype=str),
            'xyz': self.xyz,
            'notes': np.array(_notes_to_json(self.notes)),
        })
        return _save_npz(path, arrays)

    @classmethod
    def load(cls, path: Path) -> 'GraphStatsRecord':
        data = _load_npz(path)
        nodal = {
            name[len('nodal__'):]: vec for name, vec in data.items()
            if name.startswith('nodal__')
        }
        return cls(
            nodal=nodal,
            global_metrics=json.loads(str(data['global_metrics'])),
            communities=data['communities'],
            roi_names=list(data['roi_names']),
            xyz=data['xyz'],
            notes=json.loads(str(data['notes'])),
        )


_RECORD_CLASSES = {
    'timeseries': TimeSeriesRecord,
    'connectivity': ConnectivityRecord,
    'graphs': GraphRecord,
    'graph_stats': GraphStatsRecord,
}


# =============================================================================
# Index
# =============================================================================

Selection = Union[str, Sequence[str], None]


def _explicit(selection: Selection) -> Optional[List[str]]:
    """None for 'all', otherwise the list of requested names."""
    if selection is None:
        return None
    if isinstance(selection, str):
        return None if selection.lower() == 'all' else [selection]
    return list(selection)


class RecordIndex:
    """
    Mapping from typed keys to record files for one stage.

    Built by scanning a stage root or loaded from its index.json manifest.
    Lookups of explicitly named units are strict (MissingDataError); 'all'
    selections simply return what is present.
    """

    def __init__(self, kind: str, root: Path, entries: Optional[Dict[Any, Path]] = None):
        if kind not in RECORD_KINDS:
            raise ValueError(f"Unknown record kind: {kind}")
        self.kind = kind
        self.root = Path(root)
        self.entries: Dict[Any, Path] = dict(entries or {})

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator:
        return iter(sorted(self.entries))

    def __contains__(self, key) -> bool:
        return key in self.entries

    def __repr__(self) -> str:
        return f"RecordIndex(kind={self.kind!r}, root='{self.root}', n={len(self)})"

    def add(self, key, path: Optional[Path] = None) -> Path:
        """Register a record; defaults to its canonical location."""
        if not isinstance(key, _KEY_CLASSES[self.kind]):
            raise TypeError(f"{self.kind} index expects {_KEY_CLASSES[self.kind].__name__}")
        path = Path(path) if path is not None else record_path(self.kind, self.root, key)
        self.entries[key] = path
        return path

    def path(self, key) -> Path:
        if key not in self.entries:
            raise MissingDataError(f"No {self.kind} record for {key}")
        return self.entries[key]

    def load(self, key):
        """Load the record stored for a key."""
        return _RECORD_CLASSES[self.kind].load(self.path(key))

    def keys(self) -> List:
        return sorted(self.entries)

    def atlases(self) -> List[str]:
        return sorted({key.atlas for key in self.entries})

    def conditions(self, atlas: Optional[str] = None) -> List[str]:
        return sorted({
            key.condition for key in self.entries
            if atlas is None or key.atlas == atlas
        })

    def subjects(self, atlas: Optional[str] = None, condition: Optional[str] = None) -> List[str]:
        return sorted({
            key.subject for key in self.entries
            if (atlas is None or key.atlas == atlas)
            and (condition is None or key.condition == condition)
        })

    def select(
        self,
        atlases: Selection = 'all',
        conditions: Selection = 'all',
        subjects: Selection = 'all',
        **fields
    ) -> List:
        """
        Select keys by atlas / condition / subject and exact field values.

        Args:
            atlases: 'all' or atlas names
            conditions: 'all' or condition names
            subjects: 'all' or subject IDs
            **fields: Exact matches on other key fields (conn_type, weight, ...)

        Returns:
            Sorted list of matching keys

        Raises:
            MissingDataError: If an explicitly named atlas, condition or
                subject has no matching record
        """
        if 'weight' in fields and fields['weight'] is not None:
            fields['weight'] = round(float(fields['weight']), 2)
        pool = [
            key for key in self.entries
            if all(value is None or getattr(key, name) == value for name, value in fields.items())
        ]

        want_atlases = _explicit(atlases)
        want_conditions = _explicit(conditions)
        want_subjects = _explicit(subjects)
        strict = any(sel is not None for sel in (want_atlases, want_conditions, want_subjects))

        selected = []
        for atlas in want_atlases or sorted({k.atlas for k in pool}):
            in_atlas = [k for k in pool if k.atlas == atlas]
            if not in_atlas and strict:
                raise MissingDataError(f"No {self.kind} records for atlas '{atlas}' under {self.root}")
            for condition in want_conditions or sorted({k.condition for k in in_atlas}):
                in_condition = [k for k in in_atlas if k.condition == condition]
                if not in_condition and strict:
                    raise MissingDataError(
                        f"No {self.kind} records for {atlas}/{condition} under {self.root}"
                    )
                for subject in want_subjects or sorted({k.subject for k in in_condition}):
                    matches = sorted(k for k in in_condition if k.subject == subject)
                    if not matches and strict:
                        raise MissingDataError(
                            f"No {self.kind} record for subject '{subject}' in {atlas}/{condition}"
                        )
                    selected.extend(matches)
        return selected

    @classmethod
    def scan(cls, kind: str, root: Path) -> 'RecordIndex':
        """
        Build an index by walking a stage root.

        Files that do not follow the naming convention are skipped with a
        warning. For time series, a .npz is preferred over a .mat of the same
        name.
        """
        root = Path(root)
        index = cls(kind, root)
        if not root.exists():
            logger.warning(f"Directory not found, empty {kind} index: {root}")
            return index

        patterns = ('*.npz', '*.mat') if kind == 'timeseries' else ('*.npz',)
        for pattern in patterns:
            for path in sorted(root.rglob(pattern)):
                key = parse_record_path(kind, root, path)
                if key is None:
                    logger.warning(f"Skipping unrecognised {kind} file: {path.relative_to(root)}")
                    continue
                if key in index.entries:
                    continue
                index.entries[key] = path

        logger.debug(f"Indexed {len(index)} {kind} records under {root}")
        return index

    def to_dict(self) -> dict:
        return {
            'kind': self.kind,
            'root': str(self.root),
            'entries': [
                {
                    'key': key.to_dict(),
                    'path': str(path.relative_to(self.root)) if path.is_relative_to(self.root) else str(path),
                }
                for key, path in sorted(self.entries.items())
            ],
        }

    def save(self, path: Optional[Path] = None) -> Path:
        """Write the manifest (defaults to <root>/index.json)."""
        path = Path(path) if path is not None else self.root / INDEX_FILENAME
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)
        return path

    @classmethod
    def from_manifest(cls, path: Path) -> 'RecordIndex':
        """Load an index.json manifest written by save()."""
        path = Path(path)
        if not path.exists():
            raise MissingDataError(f"Index manifest not found: {path}")
        with open(path, 'r') as f:
            payload = json.load(f)

        kind = payload['kind']
        # a manifest in its default place travels with its root
        root = path.parent if path.name == INDEX_FILENAME else Path(payload['root'])
        key_class = _KEY_CLASSES[kind]
        index = cls(kind, root)
        for entry in payload['entries']:
            entry_path = Path(entry['path'])
            if not entry_path.is_absolute():
                entry_path = index.root / entry_path
            index.entries[key_class(**entry['key'])] = entry_path
        return index

    @classmethod
    def open(cls, kind: str, root: Path) -> 'RecordIndex':
        """Use the manifest under root when present, otherwise scan."""
        manifest = Path(root) / INDEX_FILENAME
        if manifest.exists():
            index = cls.from_manifest(manifest)
            if index.kind == kind:
                return index
            logger.warning(f"{manifest} describes '{index.kind}' records, rescanning for {kind}")
        return cls.scan(kind, root)
