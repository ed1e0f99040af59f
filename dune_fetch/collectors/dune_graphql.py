"""GraphQL documents sent to Dune's query API.

The upsert document mirrors what the Dune web editor sends when saving a
query, fragments included; the service rejects trimmed-down selections.
"""

UPSERT_QUERY = """\
mutation UpsertQuery($session_id: Int!, $object: queries_insert_input!, $on_conflict: queries_on_conflict!, $favs_last_24h: Boolean! = false, $favs_last_7d: Boolean! = false, $favs_last_30d: Boolean! = false, $favs_all_time: Boolean! = true) {
  insert_queries_one(object: $object, on_conflict: $on_conflict) {
    ...Query
    favorite_queries(where: {user_id: {_eq: $session_id}}, limit: 1) {
      created_at
      __typename
    }
    __typename
  }
}

fragment Query on queries {
  ...BaseQuery
  ...QueryVisualizations
  ...QueryForked
  ...QueryUsers
  ...QueryFavorites
  __typename
}

fragment BaseQuery on queries {
  id
  dataset_id
  name
  description
  query
  is_private
  is_temp
  is_archived
  created_at
  updated_at
  schedule
  tags
  parameters
  __typename
}

fragment QueryVisualizations on queries {
  visualizations {
    id
    type
    name
    options
    created_at
    __typename
  }
  __typename
}

fragment QueryForked on queries {
  forked_query {
    id
    name
    user {
      name
      __typename
    }
    __typename
  }
  __typename
}

fragment QueryUsers on queries {
  user {
    ...User
    __typename
  }
  __typename
}

fragment User on users {
  id
  name
  profile_image_url
  __typename
}

fragment QueryFavorites on queries {
  query_favorite_count_all @include(if: $favs_all_time) {
    favorite_count
    __typename
  }
  query_favorite_count_last_24h @include(if: $favs_last_24h) {
    favorite_count
    __typename
  }
  query_favorite_count_last_7d @include(if: $favs_last_7d) {
    favorite_count
    __typename
  }
  query_favorite_count_last_30d @include(if: $favs_last_30d) {
    favorite_count
    __typename
  }
  __typename
}
"""

EXECUTE_QUERY = """\
mutation ExecuteQuery($query_id: Int!, $parameters: [Parameter!]!) {
  execute_query(query_id: $query_id, parameters: $parameters) {
    job_id
    __typename
  }
}
"""

GET_RESULT = (
    "query GetResult($query_id: Int!, $parameters: [Parameter!]) { "
    "get_result_v2(query_id: $query_id, parameters: $parameters) "
    "{ job_id result_id error_id __typename } }"
)

FIND_RESULT_DATA = """\
query FindResultDataByResult($result_id: uuid!) {
  query_results(where: {id: {_eq: $result_id}}) {
    id
    job_id
    error
    runtime
    generated_at
    columns
    __typename
  }
  get_result_by_result_id(args: {want_result_id: $result_id}) {
    data
    __typename
  }
}
"""

# Owner ids the editor attaches to saved queries
USER_ID = 84
SESSION_ID = 84

UPSERT_CONFLICT_COLUMNS = [
    "dataset_id",
    "name",
    "description",
    "query",
    "schedule",
    "is_archived",
    "is_temp",
    "tags",
    "parameters",
]


def upsert_variables(query_id: int, sql: str, name: str, dataset_id: int, parameters: list[dict]) -> dict:
    """Variables for UpsertQuery: saves `sql` under `query_id` with a single table visualization."""
    return {
        "favs_last_24h": False,
        "favs_last_7d": False,
        "favs_last_30d": False,
        "favs_all_time": True,
        "object": {
            "id": query_id,
            "schedule": None,
            "dataset_id": dataset_id,
            "name": name,
            "query": sql,
            "user_id": USER_ID,
            "description": "",
            "is_archived": False,
            "is_temp": False,
            "parameters": parameters,
            "visualizations": {
                "data": [{"type": "table", "name": "Query results", "options": {}}],
                "on_conflict": {
                    "constraint": "visualizations_pkey",
                    "update_columns": ["name", "options"],
                },
            },
        },
        "on_conflict": {
            "constraint": "queries_pkey",
            "update_columns": UPSERT_CONFLICT_COLUMNS,
        },
        "session_id": SESSION_ID,
    }
