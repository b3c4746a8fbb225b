"""Role-scoped data access for users, menu, orders, franchises and stores.

Every public method takes its own connection from the `Database` handle and gives it
back on every exit path. Multi-statement writes run inside `Database.transaction()`,
so a failure rolls back before the error propagates.

Authorization is split between this module and the route layer: `get_users` checks
the caller's role itself, everything else is checked by the caller.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from pizza_service.auth.security import hash_password, verify_password
from pizza_service.auth.tokens import is_token_valid, persist_token, revoke_token
from pizza_service.db import Database
from pizza_service.errors import NotFoundError, StatusCodeError, UnauthorizedError, ValidationError
from pizza_service.models import Role, identity_id, is_role
from pizza_service.util.time import utcnow_iso


def _debug(msg: str) -> None:
    print(f"[repo] {msg}")


def _offset(page: int, per_page: int) -> int:
    return max(0, (int(page) - 1) * int(per_page))


def _like_pattern(name_filter: Optional[str]) -> str:
    return (name_filter or "*").replace("*", "%")


def _role_out(row: Any) -> Dict[str, Any]:
    d: Dict[str, Any] = {"role": str(row["role"])}
    # Non-franchise roles carry object_id 0 (or NULL from older rows): leave it out.
    if row["object_id"]:
        d["objectId"] = int(row["object_id"])
    return d


def _get_id(conn: Any, table: str, key: str, value: Any, *, message: str = "No ID found") -> int:
    row = conn.execute(f"SELECT id FROM {table} WHERE {key}=?", (value,)).fetchone()
    if row is None:
        raise NotFoundError(message)
    return int(row["id"])


class Repository:
    def __init__(self, db: Database, *, list_per_page: int | None = None):
        self.db = db
        self.list_per_page = int(list_per_page or db.cfg.LIST_PER_PAGE or 10)

    # -----------------------------
    # Menu
    # -----------------------------

    def get_menu(self) -> List[Dict[str, Any]]:
        with self.db.connection() as conn:
            rows = conn.execute("SELECT id, title, description, image, price FROM menu ORDER BY id").fetchall()
            return [dict(r) for r in rows]

    def add_menu_item(self, item: Dict[str, Any]) -> Dict[str, Any]:
        with self.db.connection() as conn:
            item_id = conn.insert(
                "INSERT INTO menu (title, description, image, price) VALUES (?, ?, ?, ?)",
                (item["title"], item["description"], item["image"], float(item["price"])),
            )
            return {**item, "id": item_id}

    # -----------------------------
    # Users
    # -----------------------------

    def _roles(self, conn: Any, user_id: int) -> List[Dict[str, Any]]:
        rows = conn.execute(
            "SELECT role, object_id FROM user_roles WHERE user_id=? ORDER BY id",
            (int(user_id),),
        ).fetchall()
        return [_role_out(r) for r in rows]

    def _user_by_id(self, conn: Any, user_id: int) -> Dict[str, Any]:
        row = conn.execute(
            "SELECT id, name, email FROM users WHERE id=?",
            (int(user_id),),
        ).fetchone()
        if row is None:
            raise NotFoundError("unknown user")
        user = dict(row)
        user["roles"] = self._roles(conn, user["id"])
        return user

    def add_user(self, user: Dict[str, Any]) -> Dict[str, Any]:
        """Create a user and its role assignments in one transaction.

        Franchisee roles name their franchise in `object`; an unknown name rolls the
        whole insert back.
        """
        hashed = hash_password(user.get("password") or "")
        with self.db.transaction() as conn:
            user_id = conn.insert(
                "INSERT INTO users (name, email, password) VALUES (?, ?, ?)",
                (user["name"], user["email"], hashed),
            )
            for role in user.get("roles") or []:
                try:
                    role_name = Role(role.get("role")).value
                except ValueError:
                    raise ValidationError(f"unknown role {role.get('role')}")
                object_id = 0
                if role_name == Role.FRANCHISEE.value:
                    object_id = _get_id(
                        conn,
                        "franchises",
                        "name",
                        role.get("object"),
                        message=f"unknown franchise {role.get('object')}",
                    )
                conn.execute(
                    "INSERT INTO user_roles (user_id, role, object_id) VALUES (?, ?, ?)",
                    (user_id, role_name, object_id),
                )
        _debug(f"Added user id={user_id}")
        out = {k: v for k, v in user.items() if k != "password"}
        out["id"] = user_id
        return out

    def get_user(self, email: str, password: Optional[str] = None) -> Dict[str, Any]:
        with self.db.connection() as conn:
            row = conn.execute("SELECT * FROM users WHERE email=?", (email,)).fetchone()
            if password is not None:
                # Same error whether the email is unknown or the password is wrong.
                if row is None or not verify_password(password, str(row["password"])):
                    raise UnauthorizedError("unknown user")
            elif row is None:
                raise NotFoundError("unknown user")

            user = {k: v for k, v in dict(row).items() if k != "password"}
            user["roles"] = self._roles(conn, user["id"])
            return user

    def update_user(
        self,
        user_id: int,
        name: Optional[str] = None,
        email: Optional[str] = None,
        password: Optional[str] = None,
    ) -> Dict[str, Any]:
        # Build dynamic SQL so we only touch provided fields. Blank counts as omitted.
        fields: list[tuple[str, Any]] = []
        if name:
            fields.append(("name", name))
        if email:
            fields.append(("email", email))
        if password:
            fields.append(("password", hash_password(password)))

        with self.db.connection() as conn:
            if fields:
                sets = ", ".join([f"{k}=?" for k, _ in fields])
                params = [v for _, v in fields] + [int(user_id)]
                conn.execute(f"UPDATE users SET {sets} WHERE id=?", params)
            return self._user_by_id(conn, user_id)

    def get_users(
        self,
        auth_user: Any,
        page: int = 1,
        limit: int = 10,
        name_filter: str = "*",
    ) -> Dict[str, Any]:
        if not is_role(auth_user, Role.ADMIN):
            raise UnauthorizedError("unauthorized", 403)

        page = max(1, int(page))
        limit = max(1, int(limit))
        with self.db.connection() as conn:
            # Fetch one extra row to learn whether another page exists.
            rows = conn.execute(
                f"SELECT id, name, email FROM users WHERE name LIKE ? ORDER BY id "
                f"LIMIT {limit + 1} OFFSET {_offset(page, limit)}",
                (_like_pattern(name_filter),),
            ).fetchall()
            more = len(rows) > limit
            users = []
            for r in rows[:limit]:
                u = dict(r)
                u["roles"] = self._roles(conn, u["id"])
                users.append(u)
            return {"users": users, "page": page, "more": more}

    def delete_user(self, user_id: int) -> None:
        try:
            with self.db.transaction() as conn:
                conn.execute("DELETE FROM auth_tokens WHERE user_id=?", (int(user_id),))
                conn.execute("DELETE FROM user_roles WHERE user_id=?", (int(user_id),))
                cur = conn.execute("DELETE FROM users WHERE id=?", (int(user_id),))
                if cur.rowcount == 0:
                    raise NotFoundError("unknown user")
        except Exception as e:
            status = e.status_code if isinstance(e, StatusCodeError) else 500
            raise StatusCodeError(f"unable to delete user: {e}", status) from e
        _debug(f"Deleted user id={user_id}")

    # -----------------------------
    # Sessions
    # -----------------------------

    def login_user(self, user_id: int, token: str) -> None:
        with self.db.connection() as conn:
            persist_token(conn, user_id=user_id, token=token)

    def is_logged_in(self, token: str) -> bool:
        with self.db.connection() as conn:
            return is_token_valid(conn, token)

    def logout_user(self, token: str) -> None:
        with self.db.connection() as conn:
            revoke_token(conn, token)

    # -----------------------------
    # Orders
    # -----------------------------

    def get_orders(self, user: Any, page: int = 1) -> Dict[str, Any]:
        """One page of a diner's orders, oldest first.

        Items are loaded with one query per order.
        """
        diner_id = identity_id(user)
        page = max(1, int(page))
        with self.db.connection() as conn:
            rows = conn.execute(
                f"SELECT id, franchise_id, store_id, order_date FROM diner_orders WHERE diner_id=? ORDER BY id "
                f"LIMIT {self.list_per_page} OFFSET {_offset(page, self.list_per_page)}",
                (diner_id,),
            ).fetchall()
            orders = []
            for r in rows:
                items = conn.execute(
                    "SELECT id, menu_id, description, price FROM order_items WHERE order_id=? ORDER BY id",
                    (int(r["id"]),),
                ).fetchall()
                orders.append(
                    {
                        "id": int(r["id"]),
                        "franchiseId": int(r["franchise_id"]),
                        "storeId": int(r["store_id"]),
                        "date": str(r["order_date"]),
                        "items": [
                            {
                                "id": int(i["id"]),
                                "menuId": int(i["menu_id"]),
                                "description": i["description"],
                                "price": float(i["price"]),
                            }
                            for i in items
                        ],
                    }
                )
            return {"dinerId": diner_id, "orders": orders, "page": page}

    def add_diner_order(self, user: Any, order: Dict[str, Any]) -> Dict[str, Any]:
        """Insert an order and its items atomically.

        Each item's description and price are copied from the menu row as it is now.
        """
        diner_id = identity_id(user)
        now = utcnow_iso()
        with self.db.transaction() as conn:
            order_id = conn.insert(
                "INSERT INTO diner_orders (diner_id, franchise_id, store_id, order_date) VALUES (?, ?, ?, ?)",
                (diner_id, int(order["franchiseId"]), int(order["storeId"]), now),
            )
            items = []
            for item in order.get("items") or []:
                menu_id = item.get("menuId")
                menu_row = conn.execute(
                    "SELECT id, title, price FROM menu WHERE id=?",
                    (menu_id,),
                ).fetchone()
                if menu_row is None:
                    raise NotFoundError("no such menu item")
                description = str(menu_row["title"])
                price = float(menu_row["price"])
                item_id = conn.insert(
                    "INSERT INTO order_items (order_id, menu_id, description, price) VALUES (?, ?, ?, ?)",
                    (order_id, int(menu_row["id"]), description, price),
                )
                items.append({"id": item_id, "menuId": int(menu_row["id"]), "description": description, "price": price})
        _debug(f"Added order id={order_id} diner={diner_id} items={len(items)}")
        return {**order, "id": order_id, "date": now, "items": items}

    # -----------------------------
    # Franchises / stores
    # -----------------------------

    def _franchise_details(self, conn: Any, franchise: Dict[str, Any]) -> Dict[str, Any]:
        franchise_id = int(franchise["id"])
        admins = conn.execute(
            """
            SELECT u.id, u.name, u.email
            FROM user_roles ur
            JOIN users u ON u.id = ur.user_id
            WHERE ur.object_id=? AND ur.role=?
            ORDER BY u.id
            """,
            (franchise_id, Role.FRANCHISEE.value),
        ).fetchall()
        stores = conn.execute(
            """
            SELECT s.id, s.name, COALESCE(SUM(oi.price), 0) AS total_revenue
            FROM stores s
            LEFT JOIN diner_orders o ON s.id = o.store_id
            LEFT JOIN order_items oi ON o.id = oi.order_id
            WHERE s.franchise_id=?
            GROUP BY s.id, s.name
            ORDER BY s.id
            """,
            (franchise_id,),
        ).fetchall()
        out = dict(franchise)
        out["admins"] = [dict(a) for a in admins]
        out["stores"] = [
            {"id": int(s["id"]), "name": s["name"], "totalRevenue": float(s["total_revenue"] or 0)}
            for s in stores
        ]
        return out

    def get_franchises(
        self,
        auth_user: Any = None,
        page: int = 0,
        limit: int = 10,
        name_filter: str = "*",
    ) -> Tuple[List[Dict[str, Any]], bool]:
        """List franchises, `page` counting from 0.

        Admins get admins and store revenue; everyone else gets store names only.
        """
        page = max(0, int(page))
        limit = max(1, int(limit))
        with self.db.connection() as conn:
            rows = conn.execute(
                f"SELECT id, name FROM franchises WHERE name LIKE ? ORDER BY id "
                f"LIMIT {limit + 1} OFFSET {page * limit}",
                (_like_pattern(name_filter),),
            ).fetchall()
            more = len(rows) > limit
            franchises = []
            for r in rows[:limit]:
                f = dict(r)
                if is_role(auth_user, Role.ADMIN):
                    f = self._franchise_details(conn, f)
                else:
                    stores = conn.execute(
                        "SELECT id, name FROM stores WHERE franchise_id=? ORDER BY id",
                        (int(f["id"]),),
                    ).fetchall()
                    f["stores"] = [dict(s) for s in stores]
                franchises.append(f)
            return franchises, more

    def get_user_franchises(self, user_id: int) -> List[Dict[str, Any]]:
        with self.db.connection() as conn:
            rows = conn.execute(
                "SELECT object_id FROM user_roles WHERE role=? AND user_id=?",
                (Role.FRANCHISEE.value, int(user_id)),
            ).fetchall()
            ids = sorted({int(r["object_id"]) for r in rows})
            if not ids:
                return []
            marks = ", ".join("?" for _ in ids)
            franchises = conn.execute(
                f"SELECT id, name FROM franchises WHERE id IN ({marks}) ORDER BY id",
                ids,
            ).fetchall()
            return [self._franchise_details(conn, dict(f)) for f in franchises]

    def get_franchise(self, franchise: Dict[str, Any]) -> Dict[str, Any]:
        with self.db.connection() as conn:
            return self._franchise_details(conn, franchise)

    def create_franchise(self, franchise: Dict[str, Any]) -> Dict[str, Any]:
        with self.db.transaction() as conn:
            admins = []
            for admin in franchise.get("admins") or []:
                email = admin.get("email")
                row = conn.execute("SELECT id, name FROM users WHERE email=?", (email,)).fetchone()
                if row is None:
                    raise NotFoundError(f"unknown user for franchise admin {email} provided")
                admins.append({"email": email, "id": int(row["id"]), "name": row["name"]})

            franchise_id = conn.insert("INSERT INTO franchises (name) VALUES (?)", (franchise["name"],))
            for admin in admins:
                conn.execute(
                    "INSERT INTO user_roles (user_id, role, object_id) VALUES (?, ?, ?)",
                    (admin["id"], Role.FRANCHISEE.value, franchise_id),
                )
        _debug(f"Created franchise id={franchise_id} admins={len(admins)}")
        return {**franchise, "id": franchise_id, "admins": admins}

    def delete_franchise(self, franchise_id: int) -> None:
        try:
            with self.db.transaction() as conn:
                conn.execute("DELETE FROM stores WHERE franchise_id=?", (int(franchise_id),))
                conn.execute(
                    "DELETE FROM user_roles WHERE role=? AND object_id=?",
                    (Role.FRANCHISEE.value, int(franchise_id)),
                )
                conn.execute("DELETE FROM franchises WHERE id=?", (int(franchise_id),))
        except Exception as e:
            raise StatusCodeError("unable to delete franchise", 500) from e

    def create_store(self, franchise_id: int, store: Dict[str, Any]) -> Dict[str, Any]:
        with self.db.connection() as conn:
            _get_id(conn, "franchises", "id", int(franchise_id), message="unknown franchise")
            store_id = conn.insert(
                "INSERT INTO stores (franchise_id, name) VALUES (?, ?)",
                (int(franchise_id), store["name"]),
            )
            return {"id": store_id, "franchiseId": int(franchise_id), "name": store["name"]}

    def delete_store(self, franchise_id: int, store_id: int) -> None:
        with self.db.connection() as conn:
            conn.execute(
                "DELETE FROM stores WHERE franchise_id=? AND id=?",
                (int(franchise_id), int(store_id)),
            )
