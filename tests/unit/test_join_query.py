from __future__ import annotations

import pytest
import sqlalchemy as sa

from sqla_associations import (
    AmbiguousAssociationKeyError,
    Join,
    JoinKind,
    JoinQuery,
    TableAlias,
)

from ..associations import message_receiver, message_sender, player_team, team_league, team_players
from ..models import Message, Player, Team, player_table, team_table


def _on_clause(query: JoinQuery, key: str, context: object = None) -> str:
    finalized = query.finalized()
    join = finalized.joins[key]
    assert finalized.from_clause is not None
    clause = join.join_clause(finalized.from_clause, finalized.from_clause, context=context)
    assert isinstance(clause, sa.Join)

    return str(clause.onclause.compile(compile_kwargs={"literal_binds": True}))


class TestJoinQueryTransformations:
    def test_of_selects_all_columns(self) -> None:
        query = JoinQuery.of(Player)

        assert [c.key for c in query.selection] == ["id", "name", "score", "team_id"]
        assert query.alias is None
        assert query.from_clause is None

    def test_select_coerces_orm_attributes(self) -> None:
        query = JoinQuery.of(Player).select([Player.name])

        assert [c.key for c in query.selection] == ["name"]

    def test_select_expands_tables_and_mapped_classes(self) -> None:
        by_table = JoinQuery.of(Player).select([player_table])
        by_class = JoinQuery.of(Player).select([Player, sa.literal_column("1").label("one")])

        assert [c.key for c in by_table.selection] == ["id", "name", "score", "team_id"]
        assert [c.key for c in by_class.selection] == ["id", "name", "score", "team_id", "one"]

    @pytest.mark.parametrize("text", ["*", "player.*"])
    def test_select_rejects_star(self, text: str) -> None:
        with pytest.raises(ValueError, match="name the columns"):
            JoinQuery.of(Player).select([sa.literal_column(text)])

    def test_transformations_return_new_queries(self) -> None:
        query = JoinQuery.of(Player)
        selected = query.select([player_table.c.id])

        assert selected is not query
        assert len(query.selection) == 4

    def test_filters_are_anded(self) -> None:
        query = (
            JoinQuery.of(Player)
            .filter(player_table.c.score > 10)
            .filter(player_table.c.name == "arthur")
        )
        predicate = query.filter_promise.resolve()

        assert str(predicate.compile(compile_kwargs={"literal_binds": True})) == (
            "player.score > 10 AND player.name = 'arthur'"
        )

    def test_deferred_filter_is_resolved_with_context(self) -> None:
        calls: list[object] = []

        def predicate(context: object) -> sa.ColumnElement[bool]:
            calls.append(context)
            return player_table.c.name == context

        query = JoinQuery.of(Player).filter(predicate)

        assert calls == []
        assert str(query.filter_promise.resolve("bob").compile(
            compile_kwargs={"literal_binds": True}
        )) == "player.name = 'bob'"
        assert calls == ["bob"]

    def test_order_replaces(self) -> None:
        query = JoinQuery.of(Player).order([player_table.c.name]).order([player_table.c.id])

        assert [str(t) for t in query.ordering.resolve()] == ["player.id"]


class TestJoined:
    def test_new_key(self) -> None:
        query = player_team.add(JoinKind.REQUIRED, JoinQuery.of(Player))

        assert list(query.joins) == ["team"]
        assert query.joins["team"].kind is JoinKind.REQUIRED

    def test_merged_key_moves_last(self) -> None:
        query = JoinQuery.of(Team)
        query = team_league.add(JoinKind.OPTIONAL, query)
        query = team_players.add(JoinKind.OPTIONAL, query)
        query = team_league.add(JoinKind.OPTIONAL, query)

        assert list(query.joins) == ["players", "league"]

    @pytest.mark.parametrize(
        ("first", "second"),
        [
            (JoinKind.OPTIONAL, JoinKind.REQUIRED),
            (JoinKind.REQUIRED, JoinKind.OPTIONAL),
        ],
    )
    def test_required_dominates(self, first: JoinKind, second: JoinKind) -> None:
        query = player_team.add(first, JoinQuery.of(Player))
        query = player_team.add(second, query)

        assert query.joins["team"].kind is JoinKind.REQUIRED

    def test_both_optional_stays_optional(self) -> None:
        query = player_team.add(JoinKind.OPTIONAL, JoinQuery.of(Player))
        query = player_team.add(JoinKind.OPTIONAL, query)

        assert query.joins["team"].kind is JoinKind.OPTIONAL

    def test_conflicting_conditions_raise(self) -> None:
        query = message_sender.for_key("users").add(JoinKind.REQUIRED, JoinQuery.of(Message))
        with pytest.raises(AmbiguousAssociationKeyError) as exc_info:
            message_receiver.for_key("users").add(JoinKind.REQUIRED, query)

        assert exc_info.value.key == "users"
        assert "for_key()" in str(exc_info.value)

    def test_conflicting_aliases_raise(self) -> None:
        query = player_team.aliased(TableAlias(name="a")).add(JoinKind.REQUIRED, JoinQuery.of(Player))
        with pytest.raises(AmbiguousAssociationKeyError):
            player_team.aliased(TableAlias(name="b")).add(JoinKind.REQUIRED, query)


class TestMerged:
    def test_different_tables(self) -> None:
        assert JoinQuery.of(Player).merged(JoinQuery.of(Team)) is None

    def test_selection_replaced_if_not_empty(self) -> None:
        merged = JoinQuery.of(Team).merged(JoinQuery.of(Team).select([team_table.c.color]))

        assert merged is not None
        assert [c.key for c in merged.selection] == ["color"]

    def test_empty_selection_does_not_replace(self) -> None:
        merged = JoinQuery.of(Team).select([team_table.c.color]).merged(JoinQuery.of(Team).select(()))

        assert merged is not None
        assert [c.key for c in merged.selection] == ["color"]

    def test_ordering_replaced_if_not_empty(self) -> None:
        left = JoinQuery.of(Team).order([team_table.c.name])
        assert left.merged(JoinQuery.of(Team)).ordering is left.ordering  # type: ignore[union-attr]

        right = JoinQuery.of(Team).order([team_table.c.id])
        assert left.merged(right).ordering is right.ordering  # type: ignore[union-attr]

    def test_joins_are_merged_recursively(self) -> None:
        left = team_league.add(JoinKind.OPTIONAL, JoinQuery.of(Team))
        right = team_players.add(JoinKind.REQUIRED, team_league.add(JoinKind.REQUIRED, JoinQuery.of(Team)))
        merged = left.merged(right)

        assert merged is not None
        assert list(merged.joins) == ["league", "players"]
        assert merged.joins["league"].kind is JoinKind.REQUIRED

    def test_join_merge_with_different_condition(self) -> None:
        sender = Join(JoinKind.REQUIRED, message_sender.condition, message_sender.query)
        receiver = Join(JoinKind.REQUIRED, message_receiver.condition, message_receiver.query)

        assert sender.merged(receiver) is None


class TestFinalized:
    def test_assigns_aliases_and_from_clauses(self) -> None:
        query = player_team.add(JoinKind.REQUIRED, JoinQuery.of(Player)).finalized()

        assert query.from_clause is player_table
        assert query.joins["team"].query.from_clause is team_table
        assert len(query.finalized_aliases) == 2

    def test_each_finalization_allocates_new_aliases(self) -> None:
        query = JoinQuery.of(Player)

        assert query.finalized().alias != query.finalized().alias

    def test_keeps_user_alias_name(self) -> None:
        query = JoinQuery.of(Player).qualified(TableAlias(name="p")).finalized()

        assert query.alias is not None
        assert query.alias.name == "p"
        assert str(query.selection[0]) == "p.id"

    def test_finalized_selection_order(self) -> None:
        query = JoinQuery.of(Player).select([player_table.c.name])
        query = player_team.select([team_table.c.color]).add(JoinKind.REQUIRED, query).finalized()

        assert [str(c) for c in query.finalized_selection] == ["player.name", "team.color"]

    def test_finalized_ordering_appends_join_orderings(self) -> None:
        query = JoinQuery.of(Player).order([player_table.c.name]).reversed()
        query = player_team.order([team_table.c.name]).add(JoinKind.REQUIRED, query).finalized()

        assert [str(t) for t in query.finalized_ordering.resolve()] == ["player.name DESC", "team.name"]

    def test_deferred_filter_is_qualified(self) -> None:
        query = JoinQuery.of(Player).qualified(TableAlias(name="p")).filter(
            lambda context: player_table.c.score > context
        )
        predicate = query.finalized().filter_promise.resolve(5)

        assert str(predicate.compile(compile_kwargs={"literal_binds": True})) == "p.score > 5"

    def test_loose_columns_are_bound(self) -> None:
        query = JoinQuery.of(Player).select([sa.column("name")]).finalized()

        assert str(query.selection[0]) == "player.name"

    def test_join_clause_needs_finalized_query(self) -> None:
        query = player_team.add(JoinKind.REQUIRED, JoinQuery.of(Player))
        with pytest.raises(ValueError, match="not finalized"):
            query.joins["team"].join_clause(player_table, player_table)

    def test_join_clause_includes_filter(self) -> None:
        association = player_team.filter(team_table.c.color == "red")
        query = association.add(JoinKind.REQUIRED, JoinQuery.of(Player))

        assert _on_clause(query, "team") == "team.id = player.team_id AND team.color = 'red'"

    def test_join_clause_resolves_deferred_filter(self) -> None:
        association = player_team.filter(lambda color: team_table.c.color == color)
        query = association.add(JoinKind.REQUIRED, JoinQuery.of(Player))

        assert _on_clause(query, "team", "blue") == "team.id = player.team_id AND team.color = 'blue'"
