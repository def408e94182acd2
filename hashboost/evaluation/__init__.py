"""Evaluation metrics for trained models (accuracy, AUC, RMSE, ...)."""
