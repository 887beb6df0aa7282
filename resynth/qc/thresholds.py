"""
Default QC thresholds for an assembled output buffer.
"""
QC_THRESHOLDS = {
    "peak_dbfs_max": 0.0,  # Summed commits above full scale will clip on export
    "dc_offset_max": 1e-2,
    "clipped_samples_max": 0,
}
