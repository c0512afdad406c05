"""Headless element model and the selector/descriptor helpers built on it."""
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional

from tracking.models import ElementInfo

FORM_FIELD_TAGS = ("input", "select", "textarea", "button", "fieldset", "output", "object")

_COMPOUND = re.compile(r"^(?P<tag>[A-Za-z][\w-]*|\*)?(?P<rest>(?:[.#][\w-]+|\[[^\]]+\])*)$")
_PART = re.compile(
    r"([.#])([\w-]+)"
    r"|\[\s*([\w-]+)\s*(?:=\s*(?:\"([^\"]*)\"|'([^']*)'|([^\]\s]+))\s*)?\]"
)


class SelectorError(ValueError):
    """The selector uses syntax the headless matcher does not support."""


@dataclass
class Rect:
    x: float = 0
    y: float = 0
    width: float = 0
    height: float = 0


@dataclass(eq=False)
class Element:
    tag_name: str
    id: str = ""
    class_name: str = ""
    text: str = ""
    attributes: Dict[str, str] = field(default_factory=dict)
    value: str = ""
    rect: Rect = field(default_factory=Rect)
    parent: Optional["Element"] = field(default=None, repr=False)
    children: List["Element"] = field(default_factory=list, repr=False)

    def __post_init__(self):
        self.tag_name = self.tag_name.lower()
        for child in self.children:
            child.parent = self

    def append(self, child: "Element") -> "Element":
        child.parent = self
        self.children.append(child)
        return child

    @property
    def classes(self) -> List[str]:
        return [c for c in self.class_name.split(" ") if c.strip()]

    @property
    def text_content(self) -> str:
        return self.text + "".join(child.text_content for child in self.children)

    def get_attribute(self, name: str) -> Optional[str]:
        if name == "id":
            return self.id or None
        if name == "class":
            return self.class_name or None
        return self.attributes.get(name)

    @property
    def input_type(self) -> str:
        return (self.attributes.get("type") or "text").lower()

    def descendants(self) -> Iterator["Element"]:
        for child in self.children:
            yield child
            yield from child.descendants()

    @property
    def form_fields(self) -> List["Element"]:
        return [el for el in self.descendants() if el.tag_name in FORM_FIELD_TAGS]

    def matches(self, selector: str) -> bool:
        """Match a compound simple selector such as ``input[type="submit"]``.

        Combinators and pseudo-classes raise SelectorError.
        """
        selector = selector.strip()
        compound = _COMPOUND.match(selector)
        if not selector or compound is None:
            raise SelectorError(f"Unsupported selector: {selector!r}")

        tag = compound.group("tag")
        if tag and tag != "*" and tag.lower() != self.tag_name:
            return False

        rest = compound.group("rest")
        for part in _PART.finditer(rest):
            prefix, name, attr, *quoted = part.groups()
            if prefix == ".":
                if name not in self.classes:
                    return False
            elif prefix == "#":
                if self.id != name:
                    return False
            else:
                actual = self.get_attribute(attr)
                expected = next((v for v in quoted if v is not None), None)
                if actual is None or (expected is not None and actual != expected):
                    return False
        return True


def matches_any(element: Optional[Element], selectors: Iterable[str]) -> bool:
    """True if the element matches one of the selectors; bad selectors or
    unusual nodes count as not matching."""
    if element is None:
        return False
    for selector in selectors:
        try:
            if element.matches(selector):
                return True
        except (SelectorError, AttributeError):
            continue
    return False


def element_selector(element: Element) -> str:
    """Readable, reasonably stable selector: id, then classes, then position."""
    if element.id:
        return f"#{element.id}"

    classes = element.classes[:3]
    if classes:
        return f"{element.tag_name}.{'.'.join(classes)}"

    selector = element.tag_name
    parent = element.parent
    if parent is not None:
        siblings = [el for el in parent.children if el.tag_name == element.tag_name]
        if len(siblings) > 1:
            selector += f":nth-child({siblings.index(element) + 1})"
    return selector


def text_excerpt(element: Element, limit: int = 100) -> Optional[str]:
    text = element.text_content.strip()
    return text[:limit] if text else None


def describe_element(element: Element) -> ElementInfo:
    rect = element.rect
    return ElementInfo(
        tag_name=element.tag_name,
        selector=element_selector(element),
        position={"x": rect.x, "y": rect.y, "width": rect.width, "height": rect.height},
        id=element.id or None,
        class_name=element.class_name or None,
        text_content=text_excerpt(element),
    )


@dataclass
class DomEvent:
    """A DOM event as delivered by the host. ``target`` is None for window events."""
    type: str
    target: Optional[Element] = None
    client_x: float = 0
    client_y: float = 0
    button: int = 0
    key: Optional[str] = None
