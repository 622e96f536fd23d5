from __future__ import annotations

import pytest
from sqlalchemy import orm

from sqla_associations import JoinAssociation, JoinCondition, ThroughAssociation
from sqla_associations.node import Node, association_for, get_node, init_node

from ..models import Base, Category, Message, Player, Role, Team, User


class TestNodeSingleton:
    def test_uninitialized_raises_runtime_error(self, reset_node_singleton: None) -> None:
        Node._Node__instance = None  # type: ignore[attr-defined]
        with pytest.raises(RuntimeError, match="not initialized"):
            Node()

    def test_singleton_returns_same_instance(self) -> None:
        assert Node() is Node()

    def test_init_node_initializes(self, reset_node_singleton: None) -> None:
        Node.reset()
        with pytest.warns(UserWarning):
            mapping = get_node(Base)
        init_node(mapping)

        assert Node().node is mapping


class TestNodeAccess:
    def test_get_returns_edges_by_key(self) -> None:
        edges = Node().get(User)

        assert set(edges) == {"roles", "sent_messages", "received_messages"}
        assert edges["roles"].target is Role

    def test_get_unknown_model_returns_empty(self) -> None:
        class Dummy(orm.DeclarativeBase):
            pass

        assert Node().get(Dummy) == {}

    def test_getitem(self) -> None:
        assert "team" in Node()[Player]

    def test_getitem_missing_raises_keyerror(self) -> None:
        class Dummy(orm.DeclarativeBase):
            pass

        with pytest.raises(KeyError):
            _ = Node()[Dummy]


class TestGetNode:
    def test_maps_every_model(self) -> None:
        with pytest.warns(UserWarning):
            mapping = get_node(Base)

        assert User in mapping
        assert Category in mapping

    def test_skips_literal_join_with_warning(self) -> None:
        with pytest.warns(UserWarning, match=r"Team\.attachments"):
            mapping = get_node(Base)

        assert "attachments" not in mapping[Team]
        assert set(mapping[Team]) == {"league", "players"}

    def test_assertion_on_non_base(self) -> None:
        with pytest.raises(AssertionError, match="subclass of orm.DeclarativeBase"):
            get_node(User)  # type: ignore[arg-type]


class TestAssociationFor:
    def test_many_to_one(self) -> None:
        association = association_for(Player.team.property)

        assert isinstance(association, JoinAssociation)
        assert association.key == "team"
        assert association.condition == JoinCondition((("team_id", "id"),), origin_is_left=True)

    def test_one_to_many(self) -> None:
        association = association_for(Team.players.property)

        assert isinstance(association, JoinAssociation)
        assert association.condition == JoinCondition((("team_id", "id"),), origin_is_left=False)

    def test_explicit_foreign_keys(self) -> None:
        association = association_for(Message.receiver.property)

        assert association is not None
        assert association.condition.mapping == (("receiver_id", "id"),)

    def test_self_referential(self) -> None:
        parent = association_for(Category.parent.property)
        children = association_for(Category.children.property)

        assert parent is not None and children is not None
        assert parent.condition == JoinCondition((("parent_id", "id"),), origin_is_left=True)
        assert children.condition == JoinCondition((("parent_id", "id"),), origin_is_left=False)

    def test_secondary(self) -> None:
        association = association_for(User.roles.property)

        assert isinstance(association, ThroughAssociation)
        assert association.key == "roles"
        assert association.pivot.key == "user_roles"
        assert association.pivot.condition.mapping == (("user_id", "id"),)
        assert association.target.condition.mapping == (("role_id", "id"),)

    def test_literal_criteria(self) -> None:
        assert association_for(Team.attachments.property) is None
