"""
hashboost — feature-hashing front end for gradient-boosted trees.

Subpackages
-----------
encoding    : HashEncoder (value -> one-hot bucket vector), FeatureAnalyzer
              (cardinality and bucket sizing), FeatureLayout (record ->
              feature vector).
ml          : Trainer, Model, the LightGBM booster adapter, the persisted
              metadata contract and seeded splits.
evaluation  : Classification and regression metrics.
ingestion   : CSV / JSON / Parquet record loaders and data-quality checks.
utils       : Logging setup.
"""
