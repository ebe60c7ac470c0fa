"""
Tests for the error taxonomy, driver error translation and message enhancement.
"""

import asyncio

import asyncpg
import pytest

from tests.fakes import foreign_key_violation
from utils.error_messages import enhance_error_message, parse_key_detail
from utils.errors import DatabaseAdminError, ErrorCode, is_retryable, translate_db_error


class TestDatabaseAdminError:

    def test_to_dict(self):
        error = DatabaseAdminError(ErrorCode.NOT_WHITELISTED, "Table 'x' is not whitelisted", {"table": "x"})
        assert error.to_dict() == {
            "error": True,
            "code": "NOT_WHITELISTED",
            "message": "Table 'x' is not whitelisted",
            "details": {"table": "x"},
            "retryable": False,
        }

    def test_code_from_string(self):
        assert DatabaseAdminError("ACCESS_DENIED", "no").code is ErrorCode.ACCESS_DENIED

    def test_details_default_to_empty(self):
        assert DatabaseAdminError(ErrorCode.DATABASE_ERROR, "boom").details == {}


class TestTranslateDbError:

    def test_foreign_key_violation(self):
        error = translate_db_error(foreign_key_violation("series_id", 999), table="books")

        assert error.code == ErrorCode.FOREIGN_KEY_VIOLATION
        assert error.retryable is False
        assert error.details == {
            "sqlstate": "23503",
            "table": "books",
            "column": "series_id",
            "value": "999",
            "referenced_table": "series",
        }
        assert "series_id=999 does not exist in 'series'" in error.message

    def test_unique_violation(self):
        driver_error = asyncpg.exceptions.UniqueViolationError(
            'duplicate key value violates unique constraint "authors_name_key"'
        )
        driver_error.detail = "Key (name)=(Ursula K. Le Guin) already exists."

        error = translate_db_error(driver_error, table="authors")

        assert error.code == ErrorCode.UNIQUE_VIOLATION
        assert error.details["column"] == "name"
        assert error.details["value"] == "Ursula K. Le Guin"
        assert "already exists" in error.message

    def test_not_null_violation(self):
        driver_error = asyncpg.exceptions.NotNullViolationError(
            'null value in column "title" of relation "books" violates not-null constraint'
        )
        error = translate_db_error(driver_error, table="books")
        assert error.code == ErrorCode.NOT_NULL_VIOLATION
        assert "'title' cannot be null" in error.message

    def test_check_violation(self):
        driver_error = asyncpg.exceptions.CheckViolationError(
            'new row for relation "audit_logs" violates check constraint "audit_logs_operation_check"'
        )
        error = translate_db_error(driver_error)
        assert error.code == ErrorCode.CHECK_VIOLATION
        assert "CREATE, READ, UPDATE, DELETE" in error.message

    def test_timeout(self):
        error = translate_db_error(asyncio.TimeoutError(), table="books")
        assert error.code == ErrorCode.TRANSACTION_TIMEOUT
        assert error.details == {"table": "books"}

    def test_connection_lost(self):
        error = translate_db_error(ConnectionResetError("reset by peer"))
        assert error.code == ErrorCode.CONNECTION_FAILURE
        assert error.retryable is True

    def test_too_many_connections(self):
        error = translate_db_error(asyncpg.exceptions.TooManyConnectionsError("sorry, too many clients"))
        assert error.code == ErrorCode.POOL_EXHAUSTED
        assert error.retryable is True

    def test_unmapped_sqlstate(self):
        error = translate_db_error(asyncpg.exceptions.UndefinedColumnError('column "x" does not exist'))
        assert error.code == ErrorCode.DATABASE_ERROR
        assert error.details["sqlstate"] == "42703"

    def test_sql_text_not_echoed(self):
        error = translate_db_error(asyncpg.exceptions.QueryCanceledError("canceling statement"), table="books")
        assert error.message == "Statement timeout exceeded; the transaction was rolled back."

    def test_passthrough(self):
        original = DatabaseAdminError(ErrorCode.ACCESS_DENIED, "no")
        assert translate_db_error(original) is original


class TestIsRetryable:

    def test_admin_error(self):
        assert is_retryable(DatabaseAdminError(ErrorCode.DEADLOCK, "x", retryable=True))
        assert not is_retryable(DatabaseAdminError(ErrorCode.VALIDATION_ERROR, "x"))

    def test_driver_error(self):
        assert is_retryable(asyncpg.exceptions.SerializationError("x"))
        assert not is_retryable(asyncpg.exceptions.UniqueViolationError("x"))
        assert not is_retryable(ValueError("x"))


class TestErrorMessages:

    def test_parse_key_detail(self):
        assert parse_key_detail('Key (series_id)=(999) is not present in table "series".') == {
            "column": "series_id",
            "value": "999",
            "referenced_table": "series",
        }

    def test_parse_still_referenced(self):
        parsed = parse_key_detail('Key (id)=(3) is still referenced from table "books".')
        assert parsed["referencing_table"] == "books"

    def test_parse_empty(self):
        assert parse_key_detail(None) == {}
        assert parse_key_detail("no key here") == {}

    def test_delete_of_referenced_row(self):
        error = Exception('update or delete on table "series" violates foreign key constraint "books_series_id_fkey"')
        error.detail = 'Key (id)=(3) is still referenced from table "books".'
        assert "still referenced from 'books'" in enhance_error_message(error)

    def test_unknown_check_constraint(self):
        message = enhance_error_message(Exception('violates check constraint "books_word_count_check"'))
        assert "Constraint violation: books_word_count_check" in message

    def test_plain_message_unchanged(self):
        assert enhance_error_message(Exception("something else")) == "something else"
