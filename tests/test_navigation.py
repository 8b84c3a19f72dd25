import pytest

import navigation
from errors import InvalidNavigation
from navigation import Router


def test_starts_at_role_selection():
    assert Router().current == navigation.ROLE_SELECTION


def test_customer_shopping_flow():
    router = Router()
    router.dispatch("choose_customer")
    router.dispatch("login_success")
    screen = router.dispatch("open_product", product_id="p42")
    assert screen == navigation.product_details("p42")
    assert screen.product_id == "p42"
    router.dispatch("added_to_cart")
    router.dispatch("open_cart")
    router.dispatch("checkout")
    assert router.dispatch("order_placed") == navigation.CUSTOMER_HOME


def test_admin_login_routes_by_role():
    router = Router()
    router.dispatch("choose_admin")
    assert router.dispatch("login_success", role="admin") == navigation.ADMIN_MANAGER

    router = Router()
    router.dispatch("choose_admin")
    assert router.dispatch("login_success", role="user") == navigation.CUSTOMER_HOME


def test_messages_carry_conversation_data():
    router = Router(navigation.ORDER_HISTORY)
    screen = router.dispatch("open_messages", order_id="o1", other_user_id="admin1")
    assert screen.order_id == "o1"
    assert screen.other_user_name == "Admin"


def test_logout_from_anywhere():
    router = Router(navigation.CHECKOUT)
    assert router.dispatch("logout") == navigation.ROLE_SELECTION
    assert router.history == [navigation.CHECKOUT, navigation.ROLE_SELECTION]


def test_undefined_transition_raises():
    router = Router()
    with pytest.raises(InvalidNavigation):
        router.dispatch("checkout")
    assert router.current == navigation.ROLE_SELECTION


def test_missing_event_data_raises():
    router = Router(navigation.CUSTOMER_HOME)
    with pytest.raises(InvalidNavigation):
        router.dispatch("open_product")
