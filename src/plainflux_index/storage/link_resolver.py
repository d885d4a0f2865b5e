"""Resolution of wikilink targets to note files."""
import logging
import os
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Union

from plainflux_index.storage.markdown_parser import link_target_name

logger = logging.getLogger(__name__)

NOTE_SUFFIX = ".md"


def iter_note_files(
    notes_root: Union[str, Path],
    reserved_folders: Sequence[str] = (),
) -> Iterator[Path]:
    """Yield every markdown file under the notes root.

    Symlinked folders are followed. Directories are visited in sorted
    order so the walk is deterministic, and any folder whose name is in
    ``reserved_folders`` is skipped together with everything below it.
    """
    reserved = set(reserved_folders)
    seen_dirs = set()
    for dirpath, dirnames, filenames in os.walk(notes_root, followlinks=True):
        # Guard against symlink cycles
        try:
            real = os.path.realpath(dirpath)
        except OSError:
            dirnames[:] = []
            continue
        if real in seen_dirs:
            dirnames[:] = []
            continue
        seen_dirs.add(real)

        dirnames[:] = sorted(d for d in dirnames if d not in reserved)
        for filename in sorted(filenames):
            if filename.endswith(NOTE_SUFFIX):
                path = Path(dirpath) / filename
                if path.is_file():
                    yield path


class LinkResolver:
    """Maps link targets to note paths by case-insensitive filename stem.

    Each lookup walks the notes tree; the first file whose stem matches
    wins. ``resolve_many`` resolves a batch of targets with a single walk.
    """

    def __init__(
        self,
        notes_root: Union[str, Path],
        reserved_folders: Sequence[str] = (),
    ) -> None:
        self.notes_root = Path(notes_root)
        self.reserved_folders = tuple(reserved_folders)

    @staticmethod
    def normalize_target(target: str) -> str:
        """Strip a ``#fragment`` and a trailing ``.md`` from a link target."""
        name = link_target_name(target).strip()
        if name.endswith(NOTE_SUFFIX):
            name = name[: -len(NOTE_SUFFIX)]
        return name

    def _walk(self) -> Iterator[Path]:
        return iter_note_files(self.notes_root, self.reserved_folders)

    def resolve(self, target: str) -> Optional[str]:
        """Return the path of the note a link points to, or None."""
        wanted = self.normalize_target(target).casefold()
        if not wanted:
            return None
        for path in self._walk():
            if path.stem.casefold() == wanted:
                return str(path)
        logger.debug(f"Link target not found: {target!r}")
        return None

    def build_stem_map(self) -> Dict[str, str]:
        """Map each case-folded stem to the first file carrying it."""
        stems: Dict[str, str] = {}
        for path in self._walk():
            stems.setdefault(path.stem.casefold(), str(path))
        return stems

    def resolve_many(self, targets: Iterable[str]) -> List[str]:
        """Resolve targets in order, dropping unresolvable and repeated ones."""
        targets = list(targets)
        if not targets:
            return []
        stems = self.build_stem_map()
        resolved: List[str] = []
        for target in targets:
            path = stems.get(self.normalize_target(target).casefold())
            if path is None:
                logger.debug(f"Link target not found: {target!r}")
            elif path not in resolved:
                resolved.append(path)
        return resolved
