"""
remote_config — Configuration retrieval strategies.

Sub-modules:
    loaders    — inline / fetch_json / fetch_text / fetch_jsonp strategies
                 and the chain that validates them into a RemoteConfig
    callbacks  — request/response correlation handles for JSONP retrieval
"""
