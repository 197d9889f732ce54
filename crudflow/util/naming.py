import re
from enum import StrEnum


class NamingFormat(StrEnum):
    """命名格式枚舉"""

    SAME = "same"
    PASCAL = "pascal"
    CAMEL = "camel"
    SNAKE = "snake"
    KEBAB = "kebab"
    UNKNOWN = "unknown"


class NameConverter:
    """名稱轉換器，用於在不同命名格式之間轉換"""

    def __init__(self, original_name: str):
        self.original_name = original_name
        self._current_format = self._detect_format()

    def _detect_format(self) -> NamingFormat:
        name = self.original_name

        if not name:
            return NamingFormat.UNKNOWN
        if "_" in name:
            return NamingFormat.SNAKE
        if "-" in name:
            return NamingFormat.KEBAB
        if name[0].isupper():
            return NamingFormat.PASCAL
        if re.search(r"[A-Z]", name):
            return NamingFormat.CAMEL
        return NamingFormat.UNKNOWN

    def _to_snake_case(self) -> str:
        name = self.original_name

        if self._current_format == NamingFormat.KEBAB:
            return name.replace("-", "_").lower()
        if self._current_format in (NamingFormat.PASCAL, NamingFormat.CAMEL):
            snake_case = re.sub("(.)([A-Z][a-z]+)", r"\1_\2", name)
            return re.sub("([a-z0-9])([A-Z])", r"\1_\2", snake_case).lower()
        return name.lower()

    def to(self, target_format: NamingFormat | str) -> str:
        """轉換為指定格式"""
        target_format = NamingFormat(target_format)

        if target_format == NamingFormat.SAME:
            return self.original_name

        # 先轉換為 snake_case 作為中間格式
        snake_name = self._to_snake_case()

        if target_format == NamingFormat.SNAKE:
            return snake_name
        if target_format == NamingFormat.KEBAB:
            return snake_name.replace("_", "-")
        if target_format == NamingFormat.PASCAL:
            return "".join(word.capitalize() for word in snake_name.split("_"))
        if target_format == NamingFormat.CAMEL:
            head, *rest = snake_name.split("_")
            return head + "".join(word.capitalize() for word in rest)
        return self.original_name


_IRREGULAR = {"person": "people", "child": "children", "man": "men", "woman": "women"}


def pluralize(word: str) -> str:
    """英文複數形式，只處理資料表命名會遇到的常見規則"""
    lower = word.lower()
    if lower in _IRREGULAR:
        return _IRREGULAR[lower]
    if re.search(r"[^aeiou]y$", lower):
        return word[:-1] + "ies"
    if re.search(r"(s|x|z|ch|sh)$", lower):
        return word + "es"
    return word + "s"


def table_name_of(type_name: str) -> str:
    """`UserGroup` -> `user_groups`"""
    snake = NameConverter(type_name).to(NamingFormat.SNAKE)
    head, _, last = snake.rpartition("_")
    plural = pluralize(last)
    return f"{head}_{plural}" if head else plural
