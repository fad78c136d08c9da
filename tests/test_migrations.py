from sqlalchemy import create_engine, inspect

from quizroom.migrations import downgrade_base, upgrade_head


def test_upgrade_and_downgrade(monkeypatch, tmp_path):
    url = f"sqlite:///{tmp_path / 'migrated.db'}"
    monkeypatch.setenv('DATABASE_URL', url)
    engine = create_engine(url)

    upgrade_head()
    tables = set(inspect(engine).get_table_names())
    assert {'user', 'class', 'enrollment', 'quiz', 'question', 'attempt', 'studentanswer'} <= tables
    indexes = {ix['name'] for ix in inspect(engine).get_indexes('attempt')}
    assert 'uq_attempt_in_progress' in indexes
    columns = {c['name'] for c in inspect(engine).get_columns('attempt')}
    assert 'time_taken_seconds' in columns

    downgrade_base()
    assert 'attempt' not in set(inspect(engine).get_table_names())
    engine.dispose()
