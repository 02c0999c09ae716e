"""
Broken Link Checker - Source Package

Modules:
- config: Configuration loading, validation and scan options
- url_expander: Expansion of {ifmobile:...}-style URL macros
- http_probe: HTTP fetching with backoff and fetch quota accounting
- entities: Account hierarchy model and the JSON inventory repository
- url_source: Unchecked ads, keywords and sitelinks for one account
- checkpoint: Entity and account marks persisted between runs
- scanner: Resumable per-account scan
- dispatch: Thread pool fan-out over accounts
- aggregator: Merging of account outcomes into the cycle
- coordinator: Cycle decisions for one invocation
- results: Cycle metadata and CSV result logs
- notifier: Slack notifications
"""

__version__ = "1.0.0"
