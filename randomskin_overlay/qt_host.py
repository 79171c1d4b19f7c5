"""Host-tree adapter over a PyQt6 widget hierarchy.

Classes live in the ``class`` dynamic property (space separated), the same
property Qt style sheets match with ``[class~="name"]``. Structural mutations are
ChildAdded/ChildRemoved events seen by an event filter installed on every widget
under the root.
"""
from __future__ import annotations

from typing import Callable, Dict, List, Optional, Sequence

from PyQt6.QtCore import QEvent, QObject, QPoint, QTimer, QUrl, Qt
from PyQt6.QtGui import QPixmap
from PyQt6.QtWidgets import QGraphicsOpacityEffect, QLabel, QWidget

from randomskin_overlay.host_tree import MutationRecord, Rect
from randomskin_overlay.logging_utils import get_logger

CLASS_PROPERTY = "class"
OVERRIDE_PROPERTY = "randomskinOverride"
_HIDDEN_VALUES = {("display", "none"), ("visibility", "hidden")}
_SHOWN_VALUES = {("display", "block"), ("visibility", "visible")}

_LOGGER = get_logger("QtHost")


def qt_after(delay_ms: int, callback: Callable[[], None]) -> None:
    """Schedule ``callback`` on the Qt event loop; exceptions are logged, never raised into Qt."""

    def _run() -> None:
        try:
            callback()
        except Exception:
            _LOGGER.exception("Scheduled overlay callback failed")

    QTimer.singleShot(max(0, int(delay_ms)), _run)


def _read_classes(obj: QObject) -> List[str]:
    value = obj.property(CLASS_PROPERTY)
    if not isinstance(value, str):
        return []
    return value.split()


def _write_classes(widget: QWidget, classes: Sequence[str]) -> None:
    widget.setProperty(CLASS_PROPERTY, " ".join(classes))
    style = widget.style()
    if style is not None:
        style.unpolish(widget)
        style.polish(widget)


def _has_classes(obj: QObject, classes: Sequence[str]) -> bool:
    present = set(_read_classes(obj))
    return all(name in present for name in classes)


def _image_path(css_value: str) -> str:
    inner = css_value.strip()
    if inner.startswith("url(") and inner.endswith(")"):
        inner = inner[4:-1].strip().strip("\"'")
    url = QUrl(inner)
    if url.isLocalFile():
        return url.toLocalFile()
    return inner


class QtHostNode:
    """Wrapper around one host widget; the tree keeps one wrapper per live widget."""

    def __init__(self, widget: QWidget, tree: "QtHostTree") -> None:
        self.widget = widget
        self._tree = tree
        self._styles: Dict[str, str] = {}
        self._baseline_sheet: Optional[str] = None
        self._baseline_visible: Optional[bool] = None

    def has_class(self, name: str) -> bool:
        return name in _read_classes(self.widget)

    def add_class(self, name: str) -> None:
        classes = _read_classes(self.widget)
        if name not in classes:
            _write_classes(self.widget, classes + [name])

    def remove_class(self, name: str) -> None:
        classes = _read_classes(self.widget)
        if name in classes:
            _write_classes(self.widget, [item for item in classes if item != name])

    def query_all(self, classes: Sequence[str]) -> List["QtHostNode"]:
        return self._tree.match(self.widget, classes)

    def query_first(self, classes: Sequence[str]) -> Optional["QtHostNode"]:
        found = self.query_all(classes)
        return found[0] if found else None

    def bounding_rect(self) -> Rect:
        origin = self.widget.mapTo(self._tree.root, QPoint(0, 0))
        return Rect(float(origin.x()), float(origin.y()), float(self.widget.width()), float(self.widget.height()))

    def style_value(self, prop: str) -> Optional[str]:
        return self._styles.get(prop)

    def set_style(self, prop: str, value: str, *, important: bool = True) -> None:
        # Widget-level sheets already outrank application sheets, so importance is implicit.
        if self._baseline_sheet is None:
            self._baseline_sheet = self.widget.styleSheet()
            parent = self.widget.parentWidget()
            self._baseline_visible = self.widget.isVisibleTo(parent) if parent is not None else not self.widget.isHidden()
        if self._styles.get(prop) == value:
            return
        self._styles[prop] = value
        self._render()

    def remove_style(self, prop: str) -> None:
        if self._styles.pop(prop, None) is None:
            return
        self._render()

    def _render(self) -> None:
        widget = self.widget
        declarations: List[str] = []
        visible: Optional[bool] = None
        for prop, value in self._styles.items():
            if (prop, value) in _HIDDEN_VALUES:
                visible = False
            elif (prop, value) in _SHOWN_VALUES and visible is None:
                visible = True
            elif prop == "background-image":
                declarations.append(f'border-image: url("{_image_path(value)}") 0 0 0 0 stretch stretch')
            elif prop in {"width", "height"}:
                declarations.append(f"min-{prop}: {value}; max-{prop}: {value}")
        opacity = self._styles.get("opacity")
        if opacity is not None:
            effect = QGraphicsOpacityEffect(widget)
            try:
                effect.setOpacity(float(opacity))
            except ValueError:
                effect.setOpacity(1.0)
            widget.setGraphicsEffect(effect)
        else:
            widget.setGraphicsEffect(None)
        baseline = self._baseline_sheet or ""
        if declarations:
            widget.setProperty(OVERRIDE_PROPERTY, True)
            block = "; ".join(declarations)
            widget.setStyleSheet(f'{baseline}\n*[{OVERRIDE_PROPERTY}="true"] {{ {block}; }}')
        else:
            widget.setProperty(OVERRIDE_PROPERTY, False)
            widget.setStyleSheet(baseline)
        if visible is None:
            visible = self._baseline_visible
        if visible is not None and visible != (not widget.isHidden()):
            widget.setVisible(visible)
        if not self._styles:
            self._baseline_sheet = None
            self._baseline_visible = None


class _ControlLabel(QLabel):
    def __init__(self) -> None:
        super().__init__()
        self.click_handler: Optional[Callable[[], None]] = None
        self.setCursor(Qt.CursorShape.PointingHandCursor)
        self.setScaledContents(True)

    def mousePressEvent(self, event) -> None:  # pragma: no cover - requires real input
        if event.button() == Qt.MouseButton.LeftButton and self.click_handler is not None:
            event.accept()
            try:
                self.click_handler()
            except Exception:
                _LOGGER.exception("Dice button click handler failed")
            return
        super().mousePressEvent(event)


class QtControlNode:
    def __init__(self, tree: "QtHostTree", classes: Sequence[str]) -> None:
        self._base_classes = list(classes[:1])
        label = _ControlLabel()
        label.setProperty(CLASS_PROPERTY, " ".join(classes))
        # Parent after the class is set so the ChildAdded event already carries it.
        label.setParent(tree.root)
        label.show()
        label.raise_()
        self.widget: Optional[_ControlLabel] = label

    def has_class(self, name: str) -> bool:
        return self.widget is not None and name in _read_classes(self.widget)

    def set_geometry(self, rect: Rect) -> None:
        if self.widget is not None:
            self.widget.setGeometry(int(round(rect.left)), int(round(rect.top)), int(rect.width), int(rect.height))

    def set_image(self, handle_ref: Optional[str]) -> None:
        if self.widget is None:
            return
        if not handle_ref:
            self.widget.clear()
            return
        pixmap = QPixmap(_image_path(handle_ref))
        if pixmap.isNull():
            _LOGGER.warning("Could not load dice button image from %s", handle_ref)
            return
        self.widget.setPixmap(pixmap)

    def set_state_class(self, state: str) -> None:
        if self.widget is not None:
            _write_classes(self.widget, self._base_classes + [state])

    def set_click_handler(self, handler: Callable[[], None]) -> None:
        if self.widget is not None:
            self.widget.click_handler = handler

    def remove(self) -> None:
        widget = self.widget
        self.widget = None
        if widget is not None:
            widget.hide()
            widget.setParent(None)
            widget.deleteLater()


class _MutationFilter(QObject):
    def __init__(self, tree: "QtHostTree") -> None:
        super().__init__()
        self._tree = tree

    def eventFilter(self, watched: QObject, event: QEvent) -> bool:
        kind = event.type()
        if kind == QEvent.Type.ChildAdded:
            child = event.child()
            if child is not None and child.isWidgetType():
                self._tree.watch(child)
                added = (self._tree.node_for(child),) if isinstance(child, QWidget) else ()
                self._tree.publish(MutationRecord(added=added))
        elif kind == QEvent.Type.ChildRemoved:
            child = event.child()
            if child is not None and child.isWidgetType():
                self._tree.publish(MutationRecord())
        return False


class QtHostTree:
    """Host tree rooted at ``root``; controls are created as children of it."""

    def __init__(self, root: QWidget) -> None:
        self.root = root
        self._nodes: Dict[int, QtHostNode] = {}
        self._subscribers: List[Callable[[MutationRecord], None]] = []
        self._filter: Optional[_MutationFilter] = None

    def node_for(self, widget: QWidget) -> QtHostNode:
        key = id(widget)
        node = self._nodes.get(key)
        if node is None or node.widget is not widget:
            node = QtHostNode(widget, self)
            self._nodes[key] = node
            widget.destroyed.connect(lambda _obj=None, k=key: self._nodes.pop(k, None))
        return node

    def match(self, base: QWidget, classes: Sequence[str]) -> List[QtHostNode]:
        return [self.node_for(widget) for widget in base.findChildren(QWidget) if _has_classes(widget, classes)]

    def query_all(self, classes: Sequence[str]) -> List[QtHostNode]:
        return self.match(self.root, classes)

    def query_first(self, classes: Sequence[str]) -> Optional[QtHostNode]:
        found = self.query_all(classes)
        return found[0] if found else None

    def create_control(self, classes: Sequence[str]) -> QtControlNode:
        return QtControlNode(self, classes)

    def subscribe(self, callback: Callable[[MutationRecord], None]) -> Callable[[], None]:
        self._subscribers.append(callback)
        if self._filter is None:
            self._filter = _MutationFilter(self)
            self.watch(self.root)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def watch(self, obj: QObject) -> None:
        if self._filter is None:
            return
        obj.installEventFilter(self._filter)
        for child in obj.findChildren(QWidget):
            child.installEventFilter(self._filter)

    def publish(self, record: MutationRecord) -> None:
        for callback in list(self._subscribers):
            try:
                callback(record)
            except Exception:
                _LOGGER.exception("Mutation subscriber failed")
