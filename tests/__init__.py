"""
Tinglebot Test Suite
====================

Test Organization
-----------------
- tests/unit/domain/   : Pure domain model tests (no infrastructure)
- tests/unit/          : Fast unit tests with mocks
- tests/integration/   : Services against a real SQLite database (aiosqlite)
                         and an in-memory Redis double

Testing Philosophy
------------------
- Domain tests pin the game rules: turn order, outcome tables, state machines
- Integration tests exercise transactions and optimistic version checks
- Use pytest markers to categorize and selectively run tests
- Follow AAA pattern: Arrange, Act, Assert
"""
