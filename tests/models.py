"""測試用的模型"""

from msgspec import Struct

from crudflow.model import Base


class User(Base, kw_only=True):
    name: str = ""
    email: str = ""
    age: int = 0
    active: bool = False
    nickname: str | None = None
    password: str = ""


class Category(Base, kw_only=True):
    name: str = ""
    children: list["Category"] = []

    def expands(self) -> list[str]:
        return ["Children"]


class Address(Struct, kw_only=True):
    city: str = ""
    street: str = ""


class Shop(Base, kw_only=True):
    name: str = ""
    owner: User | None = None
    address: Address | None = None
    status: str = ""

    def table_name(self) -> str:
        return "shop"

    def expands(self) -> list[str]:
        return ["Owner"]

    def excludes(self) -> dict[str, list]:
        return {"status": ["archived"]}


class Token(Base, kw_only=True):
    value: str = ""

    def purge(self) -> bool:
        return True


class UserQuery(Struct, kw_only=True):
    id: str = ""
    name: str = ""
    age: int = 0


class UserView(Struct, kw_only=True):
    id: str
    display: str


class UserDraft(Struct, kw_only=True):
    id: str = ""
    name: str = ""
    created_by: str = ""
    updated_by: str = ""
