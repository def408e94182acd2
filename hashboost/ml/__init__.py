"""
Model layer — LightGBM trees over hashed features.

Modules
-------
booster   : GradientBoostedTrees — LightGBM behind XGBoost-style parameter
            names; JSON artifacts.
splits    : Seeded train/test split and contiguous k-fold slices.
metadata  : ModelMetadata schema, directory layout, atomic JSON writes.
results   : PredictionResult / BatchPredictionResult.
inference : Tree outputs -> PredictionResult (binary, softmax, one-vs-rest,
            regression).
trainer   : Trainer — load, train (single model or one-vs-rest), evaluate,
            save.
model     : Model — load a saved directory and predict.
"""
