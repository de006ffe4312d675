"""Session-scoped #IDs for elements shown by `tree`. Reassigned on every rebuild."""

import logging
from typing import Dict, List, Optional

from ax_config import ShellConfig
from ax_errors import NotFound, OperationTimeout
from ax_logging import get_logger
from ax_timeout import Deadline
from ax_tree import Element, ElementTree, TreeRow


class SessionIdRegistry:
    """int ID -> Element for the last rebuild pass, plus the identity inverse."""

    def __init__(self, tree: ElementTree, config: Optional[ShellConfig] = None,
                 logger: Optional[logging.Logger] = None):
        self.tree = tree
        self.config = config or tree.config
        self.log = get_logger(logger, "registry")
        self.root: Optional[Element] = None
        self.rows: List[TreeRow] = []
        self.truncated = False
        self._by_id: List[Element] = []
        self._ids: Dict[int, int] = {}

    def __len__(self):
        return len(self._by_id)

    def clear(self):
        self.root = None
        self.rows = []
        self.truncated = False
        self._by_id = []
        self._ids = {}

    def rebuild(self, root: Element) -> List[TreeRow]:
        """Assign 0, 1, 2, ... in pre-order under `root`. Returns the walk rows."""
        self.clear()
        self.root = root
        limit = self.config.max_tree_nodes
        deadline = Deadline(self.config.find_timeout, name="tree walk")
        try:
            for row in self.tree.walk(root, deadline):
                if len(self._by_id) >= limit:
                    self.truncated = True
                    self.log.warning("Tree walk stopped at %d elements", limit)
                    break
                if id(row.element) in self._ids:
                    continue
                self._ids[id(row.element)] = len(self._by_id)
                self._by_id.append(row.element)
                self.rows.append(row)
        except OperationTimeout as e:
            self.truncated = True
            self.log.warning("Tree walk incomplete after %d elements: %s", len(self._by_id), e)
        self.log.debug("Registry rebuilt: %d elements", len(self._by_id))
        return self.rows

    def lookup(self, element_id: int) -> Element:
        if 0 <= element_id < len(self._by_id):
            return self._by_id[element_id]
        raise NotFound(f"No element with ID #{element_id}",
                       hint="Use 'tree' to see valid IDs (IDs change every time the tree is shown).")

    def index_of(self, element: Element) -> Optional[int]:
        """Identity-based inverse of lookup."""
        element_id = self._ids.get(id(element))
        if element_id is None or self._by_id[element_id] is not element:
            return None
        return element_id
