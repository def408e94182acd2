"""
Data ingestion.

Modules
-------
loader : load_csv / load_json / load_parquet -> list of records, plus
         validate_data() and analyze_data_quality().
"""
