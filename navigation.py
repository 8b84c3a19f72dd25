"""
Client navigation as an explicit finite-state router.

States are screens (some carry data, like the product being viewed),
transitions are named events. The router starts at role selection and has
no terminal state.
"""
from dataclasses import dataclass
from typing import Callable, Dict, Tuple

from errors import InvalidNavigation


@dataclass(frozen=True)
class Screen:
    name: str


@dataclass(frozen=True)
class ProductDetails(Screen):
    product_id: str = ""


@dataclass(frozen=True)
class Conversation(Screen):
    order_id: str = ""
    other_user_id: str = ""
    other_user_name: str = ""


ROLE_SELECTION = Screen("role_selection")
ADMIN_LOGIN = Screen("admin_login")
CUSTOMER_LOGIN = Screen("customer_login")
REGISTER = Screen("register")
FORGOT_PASSWORD = Screen("forgot_password")
ADMIN_MANAGER = Screen("admin_manager")
CUSTOMER_HOME = Screen("customer_home")
CART = Screen("cart")
CHECKOUT = Screen("checkout")
ORDER_HISTORY = Screen("order_history")
WISHLIST = Screen("wishlist")


def product_details(product_id: str) -> ProductDetails:
    return ProductDetails("product_details", product_id=product_id)


def conversation(order_id: str, other_user_id: str, other_user_name: str) -> Conversation:
    return Conversation("message", order_id=order_id, other_user_id=other_user_id,
                        other_user_name=other_user_name)


Target = Callable[..., Screen]


def _to(screen: Screen) -> Target:
    return lambda **_: screen


def _login_success(role: str = "user", **_) -> Screen:
    return ADMIN_MANAGER if role == "admin" else CUSTOMER_HOME


# (screen name, event) -> target
TRANSITIONS: Dict[Tuple[str, str], Target] = {
    ("role_selection", "choose_admin"): _to(ADMIN_LOGIN),
    ("role_selection", "choose_customer"): _to(CUSTOMER_LOGIN),
    ("admin_login", "login_success"): _login_success,
    ("admin_login", "back"): _to(ROLE_SELECTION),
    ("customer_login", "login_success"): _to(CUSTOMER_HOME),
    ("customer_login", "back"): _to(ROLE_SELECTION),
    ("customer_login", "register"): _to(REGISTER),
    ("customer_login", "forgot_password"): _to(FORGOT_PASSWORD),
    ("forgot_password", "back"): _to(CUSTOMER_LOGIN),
    ("register", "register_success"): _to(CUSTOMER_HOME),
    ("register", "back"): _to(CUSTOMER_LOGIN),
    ("customer_home", "open_product"): lambda product_id, **_: product_details(product_id),
    ("customer_home", "checkout"): _to(CHECKOUT),
    ("customer_home", "open_cart"): _to(CART),
    ("customer_home", "open_orders"): _to(ORDER_HISTORY),
    ("customer_home", "open_wishlist"): _to(WISHLIST),
    ("customer_home", "open_messages"): lambda order_id, other_user_id, other_user_name="Admin", **_:
        conversation(order_id, other_user_id, other_user_name),
    ("product_details", "back"): _to(CUSTOMER_HOME),
    ("product_details", "added_to_cart"): _to(CUSTOMER_HOME),
    ("cart", "checkout"): _to(CHECKOUT),
    ("cart", "open_product"): lambda product_id, **_: product_details(product_id),
    ("cart", "back"): _to(CUSTOMER_HOME),
    ("checkout", "back"): _to(CART),
    ("checkout", "order_placed"): _to(CUSTOMER_HOME),
    ("order_history", "open_messages"): lambda order_id, other_user_id, other_user_name="Admin", **_:
        conversation(order_id, other_user_id, other_user_name),
    ("order_history", "back"): _to(CUSTOMER_HOME),
    ("wishlist", "open_product"): lambda product_id, **_: product_details(product_id),
    ("wishlist", "back"): _to(CUSTOMER_HOME),
    ("message", "back"): _to(CUSTOMER_HOME),
}


class Router:
    def __init__(self, initial: Screen = ROLE_SELECTION):
        self.current = initial
        self.history = [initial]

    def dispatch(self, event: str, **data) -> Screen:
        # logout is valid from every screen
        if event == "logout":
            target = ROLE_SELECTION
        else:
            handler = TRANSITIONS.get((self.current.name, event))
            if handler is None:
                raise InvalidNavigation(f"No transition for {event!r} from {self.current.name!r}")
            try:
                target = handler(**data)
            except TypeError as e:
                raise InvalidNavigation(f"Missing data for {event!r}: {e}") from e
        self.current = target
        self.history.append(target)
        return target
