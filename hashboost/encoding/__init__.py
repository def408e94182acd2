"""
Categorical encoding layer.

Modules
-------
hash_encoder : HashEncoder, HashEncoderConfig and normalize_value(); the
               deterministic value -> bucket mapping.
analyzer     : FeatureAnalyzer — one pass over the training records that
               counts distinct values and sizes each encoder.
layout       : FeatureLayout — concatenates encoder blocks and numeric
               values into the feature vector shared by training and
               inference.
"""
