#!/usr/bin/env python3
"""
es_bulkload 예시 1 — 설정 + Bulk 페이로드 생성 (네트워크 없음)

테스트 항목:
  1. LoadConfig 기본값 / validate / Basic Auth 파싱
  2. make_action — 메타 라인 (index, type, _id, pipeline)
  3. id 필드 — 숫자/문자열 허용, 객체/배열/bool/null 거부, 누락 시 생략
  4. build_payload — 결정적 출력 + 배치 분할 후 이어붙여도 동일
  5. 깨진 입력 — MalformedLineError
"""

import json

from es_bulkload import (
    BulkAction,
    LoadConfig,
    MalformedLineError,
    build_payload,
    make_action,
    parse_basic_auth,
)


def test_config():
    """LoadConfig: 기본값 + validate + Basic Auth"""
    print("=" * 60)
    print("[1] LoadConfig — 기본값 + validate + auth")
    print("=" * 60)

    c = LoadConfig(index_name="books")
    assert c.servers == ("http://localhost:9200",)
    assert c.batch_size == 1000
    assert c.workers >= 1
    assert c.refresh_interval == "1s"
    assert c.max_retries == 3
    assert c.doc_type is None
    assert c.has_auth is False
    assert c.validate() is c
    print(f"  기본: servers={c.servers}, batch={c.batch_size}, workers={c.workers}")

    for bad in (
        LoadConfig(),
        LoadConfig(index_name="x", servers=()),
        LoadConfig(index_name="x", batch_size=0),
        LoadConfig(index_name="x", workers=0),
    ):
        try:
            bad.validate()
            assert False, "Should have raised"
        except ValueError:
            pass
    print("  잘못된 설정 → ValueError  OK")

    assert parse_basic_auth("elastic:changeme") == ("elastic", "changeme")
    assert parse_basic_auth(None) == (None, None)
    assert parse_basic_auth("") == (None, None)
    for bad in ("elastic", "a:b:c"):
        try:
            parse_basic_auth(bad)
            assert False, "Should have raised"
        except ValueError as e:
            assert "username:password" in str(e)
    print("  parse_basic_auth  OK")

    secret = LoadConfig(index_name="x", username="u", password="hunter2")
    assert secret.has_auth
    assert "hunter2" not in repr(secret)
    print("  repr에 비밀번호 없음  OK")

    print("  PASS\n")


def test_make_action():
    """make_action: 메타 라인 구성"""
    print("=" * 60)
    print("[2] make_action — 메타 라인")
    print("=" * 60)

    line = '{"id": 42, "x": 1}'

    plain = make_action(line, LoadConfig(index_name="books"))
    assert plain.meta == {"index": {"_index": "books"}}
    assert plain.source == line
    print(f"  id 필드 미설정: {plain.meta}  OK")

    with_id = make_action(line, LoadConfig(index_name="books", id_field="id"))
    assert with_id.meta == {"index": {"_index": "books", "_id": "42"}}
    # 반복 호출해도 동일
    assert make_action(line, LoadConfig(index_name="books", id_field="id")) == with_id
    print(f"  id_field=id: {with_id.meta}  OK")

    full = make_action(
        line,
        LoadConfig(index_name="books", doc_type="default", id_field="id", pipeline="enrich"),
    )
    assert full.meta == {
        "index": {"_index": "books", "_type": "default", "_id": "42", "pipeline": "enrich"}
    }
    print(f"  type + pipeline: {full.meta}  OK")

    print("  PASS\n")


def test_identifier_field():
    """id 필드: 허용/거부/누락"""
    print("=" * 60)
    print("[3] id 필드 — 스칼라만 허용")
    print("=" * 60)

    config = LoadConfig(index_name="books", id_field="isbn")

    assert make_action('{"isbn": "978-3"}', config).meta["index"]["_id"] == "978-3"
    assert make_action('{"isbn": 1.5}', config).meta["index"]["_id"] == "1.5"
    print("  문자열/실수  OK")

    missing = make_action('{"title": "no id"}', config)
    assert "_id" not in missing.meta["index"]
    print("  필드 누락 → _id 생략 (ES 자동 생성)  OK")

    for value in ('{"a": 1}', "[1, 2]", "true", "null"):
        try:
            make_action(f'{{"isbn": {value}}}', config)
            assert False, "Should have raised"
        except MalformedLineError as e:
            assert "isbn" in e.reason
    print("  객체/배열/bool/null → MalformedLineError  OK")

    # 중첩 필드는 최상위 필드로 취급하지 않음
    nested = make_action('{"meta": {"isbn": "x"}}', config)
    assert "_id" not in nested.meta["index"]
    print("  중첩 필드는 무시  OK")

    print("  PASS\n")


def test_build_payload():
    """build_payload: 결정적 + 분할/결합 동일성"""
    print("=" * 60)
    print("[4] build_payload — 결정적 출력")
    print("=" * 60)

    config = LoadConfig(index_name="books", id_field="id")
    lines = [json.dumps({"id": i, "title": f"제목 {i}"}, ensure_ascii=False) for i in range(23)]
    actions = [make_action(line, config) for line in lines]

    whole = build_payload(actions)
    assert whole == build_payload(list(actions))
    assert whole.endswith("\n")

    rows = whole.split("\n")[:-1]
    assert len(rows) == 2 * len(lines)
    for i, line in enumerate(lines):
        assert json.loads(rows[2 * i]) == {"index": {"_index": "books", "_id": str(i)}}
        assert rows[2 * i + 1] == line
    print(f"  {len(lines)}건 → {len(rows)}줄, 메타/본문 교대  OK")

    for size in (1, 5, 7, 23, 100):
        parts = [build_payload(actions[i : i + size]) for i in range(0, len(actions), size)]
        assert "".join(parts) == whole
    print("  batch_size 1/5/7/23/100 분할 후 결합 == 전체  OK")

    assert build_payload([]) == ""
    meta_line = build_payload([BulkAction({"index": {"_index": "한글"}}, "{}")]).split("\n")[0]
    assert meta_line == '{"index":{"_index":"한글"}}'
    print("  빈 배치 / compact 메타  OK")

    print("  PASS\n")


def test_malformed_lines():
    """깨진 입력 → MalformedLineError"""
    print("=" * 60)
    print("[5] MalformedLineError")
    print("=" * 60)

    config = LoadConfig(index_name="books")
    for line in ("not json", "{broken", '"just a string"', "[1, 2, 3]", "42"):
        try:
            make_action(line, config)
            assert False, f"Should have raised: {line}"
        except MalformedLineError as e:
            assert e.line == line
            assert isinstance(e, ValueError)
    print("  비JSON / 비객체 5종  OK")

    print("  PASS\n")


if __name__ == "__main__":
    test_config()
    test_make_action()
    test_identifier_field()
    test_build_payload()
    test_malformed_lines()

    print("=" * 60)
    print("ALL bulk builder EXAMPLES PASSED")
    print("=" * 60)
